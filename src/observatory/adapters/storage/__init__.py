"""Metrics storage adapters."""

from observatory.adapters.storage.in_memory import InMemoryMetricsStorage
from observatory.adapters.storage.redis import RedisMetricsStorage
from observatory.adapters.storage.sqlite import SQLiteMetricsStorage
from observatory.core.config import RegistryConfig
from observatory.core.ports import MetricsStoragePort

__all__ = [
    "InMemoryMetricsStorage",
    "RedisMetricsStorage",
    "SQLiteMetricsStorage",
    "create_storage",
]


def create_storage(config: RegistryConfig) -> MetricsStoragePort:
    """Build the storage adapter named by ``config.storage``."""
    if config.storage == "redis":
        return RedisMetricsStorage(
            host=config.redis.host,
            port=config.redis.port,
            password=config.redis.password,
            database=config.redis.database,
            prefix=config.redis.prefix,
            socket_timeout=config.redis.socket_timeout,
        )
    if config.storage == "sqlite":
        return SQLiteMetricsStorage(config.sqlite_path)
    return InMemoryMetricsStorage()
