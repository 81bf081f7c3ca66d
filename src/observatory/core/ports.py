"""Port interfaces for exporters and metrics storage adapters.

These protocols define the contracts that adapters must implement.
Collectors depend only on these interfaces, not concrete implementations.
"""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from observatory.core.models import MetricFamily, MetricIdentity


@runtime_checkable
class ExporterPort(Protocol):
    """Port for metric exporters.

    Adapters implementing this protocol receive finished observation records
    and custom metric updates. Examples: RegistryExporter (pull),
    BufferedPushExporter (push).
    """

    def record_inbound(self, record: Mapping[str, Any]) -> None:
        """Record an inbound HTTP request (method, route, status_code, duration)."""
        ...

    def record_outbound(self, record: Mapping[str, Any]) -> None:
        """Record an outbound HTTP call (method, host, status_code, duration)."""
        ...

    def record_job(self, record: Mapping[str, Any]) -> None:
        """Record a job execution (job_name, queue, status, duration)."""
        ...

    def record_exception(
        self, error: BaseException, context: Mapping[str, Any] | None = None
    ) -> None:
        """Record an exception occurrence."""
        ...

    def increment_counter(
        self, name: str, labels: Mapping[str, str] | None = None, value: float = 1.0
    ) -> None:
        """Increment a user-named counter."""
        ...

    def set_gauge(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        """Set a user-named gauge."""
        ...

    def observe_histogram(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        """Observe a value on a user-named histogram."""
        ...

    def get_output(self) -> str:
        """Render current state in the sink's wire format."""
        ...

    def flush(self) -> None:
        """Deliver buffered data (no-op for pull exporters)."""
        ...


@runtime_checkable
class MetricsStoragePort(Protocol):
    """Port for metric value storage used by the registry exporter.

    Adapters implementing this protocol hold accumulated counter, gauge and
    histogram values. Examples: InMemoryMetricsStorage, SQLiteMetricsStorage,
    RedisMetricsStorage.
    """

    def connect(self) -> None:
        """Establish the backend connection.

        Raises:
            StorageUnavailableError: If the backend cannot be reached.
        """
        ...

    def register(self, identity: MetricIdentity) -> MetricIdentity:
        """Register a metric, returning the identity stored first under its name."""
        ...

    def increment(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        """Add ``value`` to a counter series."""
        ...

    def set(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        """Set a gauge series to ``value``."""
        ...

    def observe(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        """Add one observation of ``value`` to a histogram series."""
        ...

    def collect(self) -> list[MetricFamily]:
        """Return every registered metric with its current samples."""
        ...

    def wipe(self) -> None:
        """Remove every metric and value."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...
