"""observatory: request, outbound call, job and exception telemetry for Python services."""

from observatory.adapters.exporters import (
    BufferedPushExporter,
    RegistryExporter,
    create_exporter,
)
from observatory.adapters.logging import ObservatoryJsonFormatter, configure_channel
from observatory.adapters.storage import (
    InMemoryMetricsStorage,
    RedisMetricsStorage,
    SQLiteMetricsStorage,
    create_storage,
)
from observatory.core.config import ConfigError, ObservatoryConfig
from observatory.core.errors import StorageUnavailableError
from observatory.core.masking import SensitiveDataMasker
from observatory.core.models import JobInfo, RequestInfo, ResponseInfo
from observatory.core.ports import ExporterPort, MetricsStoragePort
from observatory.observatory import Observatory, create_observatory

__all__ = [
    "BufferedPushExporter",
    "ConfigError",
    "ExporterPort",
    "InMemoryMetricsStorage",
    "JobInfo",
    "MetricsStoragePort",
    "Observatory",
    "ObservatoryConfig",
    "ObservatoryJsonFormatter",
    "RedisMetricsStorage",
    "RegistryExporter",
    "RequestInfo",
    "ResponseInfo",
    "SQLiteMetricsStorage",
    "SensitiveDataMasker",
    "StorageUnavailableError",
    "configure_channel",
    "create_exporter",
    "create_observatory",
    "create_storage",
]
