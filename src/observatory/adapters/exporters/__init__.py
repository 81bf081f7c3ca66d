"""Exporter adapters and the factory selecting one from configuration."""

from observatory.adapters.exporters.push import BufferedPushExporter
from observatory.adapters.exporters.registry import RegistryExporter
from observatory.core.config import ObservatoryConfig
from observatory.core.ports import ExporterPort

__all__ = ["BufferedPushExporter", "RegistryExporter", "create_exporter"]


def create_exporter(config: ObservatoryConfig) -> ExporterPort:
    """Build the exporter named by ``config.exporter``."""
    if config.exporter == "push":
        return BufferedPushExporter(config)
    return RegistryExporter(config)
