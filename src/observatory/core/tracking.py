"""Correlation of start and end events for in-flight observations."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import psutil

_PROCESS = psutil.Process()

BYTES_PER_MB = 1024 * 1024


def memory_usage() -> int:
    """Resident set size of the current process, in bytes."""
    return int(_PROCESS.memory_info().rss)


@dataclass(frozen=True)
class StartSnapshot:
    """Timer and memory reading taken when an observation starts.

    Attributes:
        started_at: Clock reading (seconds) at start.
        memory: Resident memory in bytes at start.
    """

    started_at: float
    memory: int


class StartTracker:
    """Keyed map of start snapshots with a bounded lifetime.

    Every ``start`` sweeps entries older than ``ttl`` seconds, so observations
    whose end event never arrives cannot accumulate. ``finish`` on an unknown
    key returns a snapshot taken now, which yields a near-zero duration.

    Thread-safe: concurrent observations use distinct keys and share one lock.
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.perf_counter,
        memory: Callable[[], int] = memory_usage,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._memory = memory
        self._entries: dict[str, StartSnapshot] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def now(self) -> float:
        return self._clock()

    def snapshot(self) -> StartSnapshot:
        return StartSnapshot(self._clock(), self._memory())

    def start(self, key: str) -> StartSnapshot:
        """Record a start snapshot for ``key``, replacing any previous one."""
        snap = self.snapshot()
        with self._lock:
            self._sweep_locked(snap.started_at)
            self._entries[key] = snap
        return snap

    def peek(self, key: str) -> StartSnapshot | None:
        with self._lock:
            return self._entries.get(key)

    def finish(self, key: str) -> StartSnapshot:
        """Remove and return the snapshot for ``key``.

        A missing key is tolerated: a snapshot of the current moment is
        returned instead.
        """
        with self._lock:
            snap = self._entries.pop(key, None)
        if snap is None:
            return self.snapshot()
        return snap

    def elapsed(self, snap: StartSnapshot) -> float:
        """Seconds since ``snap``, never negative."""
        return max(0.0, self._clock() - snap.started_at)

    def sweep(self) -> int:
        """Drop entries older than the TTL; return how many were dropped."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, s in self._entries.items() if now - s.started_at > self._ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)
