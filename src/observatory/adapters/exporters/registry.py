"""Pull-based exporter keeping metrics in a storage backend for scraping."""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from observatory.adapters.storage import create_storage
from observatory.core.config import ObservatoryConfig, RegistryConfig
from observatory.core.encoding.prometheus import render
from observatory.core.errors import (
    StorageUnavailableError,
    exception_file_basename,
    qualified_name,
)
from observatory.core.metrics import (
    counter,
    default_metrics,
    gauge,
    histogram,
    label_values_for,
    sanitize_label,
    sanitize_name,
    sanitize_namespace,
)
from observatory.core.models import MetricIdentity
from observatory.core.ports import MetricsStoragePort

logger = logging.getLogger(__name__)

# (kind, sanitised name, label name set)
IdentityKey = tuple[str, str, frozenset[str]]


class RegistryExporter:
    """Exporter holding counters, gauges and histograms for a metrics scraper.

    Nothing is connected at construction. The storage backend and the default
    metric set are set up on first use, and only when the registry is
    enabled; an unreachable backend leaves the exporter inert (recording is a
    no-op, :meth:`get_output` returns ``""``) and the next call retries.

    Example:
        ```python
        exporter = RegistryExporter(ObservatoryConfig(registry=RegistryConfig(enabled=True)))
        exporter.record_inbound({"method": "GET", "route": "home", "status_code": 200, "duration": 0.1})
        print(exporter.get_output())
        ```
    """

    def __init__(
        self,
        config: ObservatoryConfig,
        storage_factory: Callable[[RegistryConfig], MetricsStoragePort] = create_storage,
    ) -> None:
        self._config = config
        self._storage_factory = storage_factory
        self._namespace = sanitize_namespace(config.app_name)
        self._storage: MetricsStoragePort | None = None
        self._initialized = False
        self._identities: dict[IdentityKey, MetricIdentity] = {}
        self._lock = threading.RLock()

    @property
    def enabled(self) -> bool:
        return self._config.enabled and self._config.registry.enabled

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def identities(self) -> list[MetricIdentity]:
        """Metric identities registered through this exporter."""
        with self._lock:
            return list(self._identities.values())

    def _ensure_initialized(self) -> bool:
        if self._initialized:
            return True
        if not self.enabled:
            return False
        with self._lock:
            if self._initialized:
                return True
            storage = self._storage_factory(self._config.registry)
            try:
                storage.connect()
                for identity in default_metrics(
                    self._namespace, self._config.registry.buckets
                ):
                    self._remember(storage.register(identity))
            except StorageUnavailableError as exc:
                logger.warning("Metrics storage unavailable, exporter inactive: %s", exc)
                return False
            self._storage = storage
            self._initialized = True
            logger.debug(
                "Registry exporter initialized with %s storage",
                self._config.registry.storage,
            )
        return True

    def _active_storage(self) -> MetricsStoragePort:
        storage = self._storage
        if storage is None:
            raise StorageUnavailableError("metrics storage was released")
        return storage

    def _remember(self, identity: MetricIdentity) -> None:
        key = (identity.kind, identity.name, frozenset(identity.label_names))
        self._identities.setdefault(key, identity)

    def _default(self, kind: str, name: str) -> MetricIdentity:
        for identity in self._identities.values():
            if identity.kind == kind and identity.name == name:
                return identity
        raise KeyError(name)

    def _get_or_register(
        self, kind: str, name: str, label_names: tuple[str, ...]
    ) -> MetricIdentity | None:
        """Return the cached identity for a dynamic metric, registering it once.

        A name already registered with another kind or label set keeps its
        first definition; the conflicting call is dropped.
        """
        key = (kind, name, frozenset(label_names))
        with self._lock:
            identity = self._identities.get(key)
            if identity is not None:
                return identity
            if any(existing.name == name for existing in self._identities.values()):
                logger.warning(
                    "Metric %r already registered with other labels; dropping update", name
                )
                return None

            help_text = f"Custom {kind}: {name}"
            if kind == "counter":
                candidate = counter(self._namespace, name, label_names, help_text)
            elif kind == "gauge":
                candidate = gauge(self._namespace, name, label_names, help_text)
            else:
                candidate = histogram(
                    self._namespace,
                    name,
                    label_names,
                    help_text,
                    self._config.registry.buckets,
                )

            try:
                stored = self._active_storage().register(candidate)
            except StorageUnavailableError as exc:
                logger.warning("Cannot register metric %r: %s", name, exc)
                return None
            if stored.kind != kind or set(stored.label_names) != set(label_names):
                logger.warning(
                    "Metric %r stored with other labels; dropping update", name
                )
                return None
            self._identities[key] = stored
            return stored

    def _apply(
        self,
        operation: str,
        identity: MetricIdentity,
        values: tuple[str, ...],
        value: float,
    ) -> None:
        try:
            getattr(self._active_storage(), operation)(identity, values, value)
        except StorageUnavailableError as exc:
            logger.warning("Dropping %s on %s: %s", operation, identity.full_name, exc)

    def _record(
        self,
        names: tuple[str, str],
        record: Mapping[str, Any],
        labels: dict[str, Any],
    ) -> None:
        total = self._default("counter", names[0])
        duration = self._default("histogram", names[1])
        self._apply("increment", total, label_values_for(total, labels), 1.0)
        self._apply(
            "observe",
            duration,
            label_values_for(duration, labels),
            float(record.get("duration", 0.0)),
        )

    def record_inbound(self, record: Mapping[str, Any]) -> None:
        if not self._ensure_initialized():
            return
        labels = {
            "method": record.get("method", "GET"),
            "route": record.get("route") or "unknown",
            "status_code": record.get("status_code", record.get("status", 0)),
        }
        self._record(("http_requests_total", "http_request_duration_seconds"), record, labels)

    def record_outbound(self, record: Mapping[str, Any]) -> None:
        if not self._ensure_initialized():
            return
        labels = {
            "method": record.get("method", "GET"),
            "host": record.get("host") or "unknown",
            "status_code": record.get("status_code", record.get("status", 0)),
        }
        self._record(
            ("http_outbound_requests_total", "http_outbound_duration_seconds"),
            record,
            labels,
        )

    def record_job(self, record: Mapping[str, Any]) -> None:
        if not self._ensure_initialized():
            return
        labels = {
            "job_name": record.get("job_name") or "unknown",
            "queue": record.get("queue") or "default",
            "status": record.get("status", "processed"),
        }
        self._record(("jobs_processed_total", "jobs_duration_seconds"), record, labels)

    def record_exception(
        self, error: BaseException, context: Mapping[str, Any] | None = None
    ) -> None:
        if not self._ensure_initialized():
            return
        identity = self._default("counter", "exceptions_total")
        values = (
            sanitize_label(qualified_name(type(error))),
            sanitize_label(exception_file_basename(error)),
        )
        self._apply("increment", identity, values, 1.0)

    def _custom(
        self,
        kind: str,
        operation: str,
        name: str,
        value: float,
        labels: Mapping[str, Any] | None,
    ) -> None:
        if not self._ensure_initialized():
            return
        labels = labels or {}
        label_names = tuple(sanitize_name(str(k)) for k in labels)
        identity = self._get_or_register(kind, sanitize_name(name), label_names)
        if identity is None:
            return
        self._apply(operation, identity, label_values_for(identity, labels), float(value))

    def increment_counter(
        self, name: str, labels: Mapping[str, Any] | None = None, value: float = 1.0
    ) -> None:
        self._custom("counter", "increment", name, value, labels)

    def set_gauge(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        self._custom("gauge", "set", name, value, labels)

    def observe_histogram(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        self._custom("histogram", "observe", name, value, labels)

    def get_output(self) -> str:
        if not self._ensure_initialized():
            return ""
        try:
            return render(self._active_storage().collect())
        except StorageUnavailableError as exc:
            logger.warning("Cannot read metrics storage: %s", exc)
            return ""

    def flush(self) -> None:
        """Metrics stay in storage until scraped; nothing to flush."""

    def wipe(self) -> None:
        """Remove every stored metric value and forget registered identities."""
        with self._lock:
            if self._storage is not None:
                self._storage.wipe()
                self._storage.close()
            self._storage = None
            self._identities.clear()
            self._initialized = False

    def close(self) -> None:
        with self._lock:
            if self._storage is not None:
                self._storage.close()
