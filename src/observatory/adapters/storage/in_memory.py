"""In-memory metrics storage adapter."""

import threading

from observatory.adapters.storage.base import build_family
from observatory.core.metrics import SeriesKey, histogram_updates
from observatory.core.models import MetricFamily, MetricIdentity


class InMemoryMetricsStorage:
    """In-memory implementation of MetricsStoragePort.

    Stores metric values in dictionaries guarded by a lock. Suitable for
    single-process applications and testing; values are lost on restart.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, MetricIdentity] = {}
        self._series: dict[str, dict[SeriesKey, float]] = {}
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Nothing to connect to."""

    def register(self, identity: MetricIdentity) -> MetricIdentity:
        """Register a metric; the first identity stored under a name wins."""
        with self._lock:
            existing = self._metrics.setdefault(identity.full_name, identity)
            self._series.setdefault(identity.full_name, {})
            return existing

    def increment(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        key: SeriesKey = ("", label_values, None)
        with self._lock:
            series = self._series.setdefault(identity.full_name, {})
            series[key] = series.get(key, 0.0) + value

    def set(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        with self._lock:
            self._series.setdefault(identity.full_name, {})[("", label_values, None)] = value

    def observe(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        updates = histogram_updates(identity, label_values, value)
        with self._lock:
            series = self._series.setdefault(identity.full_name, {})
            for key, amount in updates:
                series[key] = series.get(key, 0.0) + amount

    def collect(self) -> list[MetricFamily]:
        """Snapshot every registered metric as a family."""
        with self._lock:
            snapshot = [
                (identity, dict(self._series.get(name, {})))
                for name, identity in self._metrics.items()
            ]
        return [build_family(identity, series) for identity, series in snapshot]

    def wipe(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._series.clear()

    def close(self) -> None:
        """Nothing to release."""
