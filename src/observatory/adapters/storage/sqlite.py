"""SQLite metrics storage adapter.

Shares metric values between worker processes running on one host. File
databases run in WAL mode; ``:memory:`` keeps a single persistent connection
since SQLite in-memory databases are connection-scoped.
"""

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from observatory.adapters.storage.base import build_family, decode_series, encode_series
from observatory.core.errors import StorageUnavailableError
from observatory.core.metrics import SeriesKey, histogram_updates
from observatory.core.models import MetricFamily, MetricIdentity

_SCHEMA = """
CREATE TABLE IF NOT EXISTS metric_meta (
    name TEXT PRIMARY KEY,
    meta TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS metric_values (
    name TEXT NOT NULL,
    series TEXT NOT NULL,
    value REAL NOT NULL,
    PRIMARY KEY (name, series)
);
"""

_INCREMENT = """
INSERT INTO metric_values (name, series, value) VALUES (?, ?, ?)
ON CONFLICT (name, series) DO UPDATE SET value = value + excluded.value
"""

_SET = """
INSERT INTO metric_values (name, series, value) VALUES (?, ?, ?)
ON CONFLICT (name, series) DO UPDATE SET value = excluded.value
"""


class SQLiteMetricsStorage:
    """SQLite implementation of MetricsStoragePort.

    Each write is its own transaction, so concurrent processes never lose an
    increment. Histogram observations update all of their series in one
    transaction.

    Example:
        ```python
        storage = SQLiteMetricsStorage("/var/run/app/metrics.db")
        storage.connect()
        ```
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        """Initialize storage with a database path.

        Args:
            db_path: Path to the SQLite database file, or ``:memory:``.
            timeout: Seconds to wait for a lock held by another process.
        """
        self._db_path = db_path
        self._timeout = timeout
        self._initialized = False
        self._lock = threading.Lock()
        self._persistent_conn: sqlite3.Connection | None = None

    @property
    def _should_close_connection(self) -> bool:
        return self._db_path != ":memory:"

    def connect(self) -> None:
        """Create the schema.

        Raises:
            StorageUnavailableError: If the database cannot be opened.
        """
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            try:
                if self._db_path == ":memory:":
                    self._persistent_conn = sqlite3.connect(
                        ":memory:", check_same_thread=False
                    )
                    self._persistent_conn.executescript(_SCHEMA)
                else:
                    with self._open() as db:
                        db.execute("PRAGMA journal_mode=WAL")
                        db.executescript(_SCHEMA)
            except sqlite3.Error as exc:
                raise StorageUnavailableError(
                    f"cannot open metrics database {self._db_path!r}: {exc}"
                ) from exc
            self._initialized = True

    def _open(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=self._timeout)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction.

        File connections are closed afterwards; the ``:memory:`` connection is
        shared and serialised by the lock.

        Raises:
            StorageUnavailableError: If the database fails mid-operation.
        """
        self.connect()
        try:
            if self._persistent_conn is not None:
                with self._lock, self._persistent_conn:
                    yield self._persistent_conn
                return
            conn = self._open()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageUnavailableError(
                f"metrics database {self._db_path!r} failed: {exc}"
            ) from exc

    def register(self, identity: MetricIdentity) -> MetricIdentity:
        """Register a metric; the first identity stored under a name wins."""
        with self._connection() as db:
            db.execute(
                "INSERT OR IGNORE INTO metric_meta (name, meta) VALUES (?, ?)",
                (identity.full_name, json.dumps(identity.to_dict())),
            )
            row = db.execute(
                "SELECT meta FROM metric_meta WHERE name = ?", (identity.full_name,)
            ).fetchone()
        return MetricIdentity.from_dict(json.loads(row[0]))

    def increment(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        with self._connection() as db:
            db.execute(
                _INCREMENT,
                (identity.full_name, encode_series(("", label_values, None)), value),
            )

    def set(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        with self._connection() as db:
            db.execute(
                _SET, (identity.full_name, encode_series(("", label_values, None)), value)
            )

    def observe(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        rows = [
            (identity.full_name, encode_series(key), amount)
            for key, amount in histogram_updates(identity, label_values, value)
        ]
        with self._connection() as db:
            db.executemany(_INCREMENT, rows)

    def collect(self) -> list[MetricFamily]:
        with self._connection() as db:
            metas = db.execute("SELECT name, meta FROM metric_meta").fetchall()
            values = db.execute("SELECT name, series, value FROM metric_values").fetchall()

        series: dict[str, dict[SeriesKey, float]] = {}
        for name, encoded, value in values:
            series.setdefault(name, {})[decode_series(encoded)] = value

        return [
            build_family(MetricIdentity.from_dict(json.loads(meta)), series.get(name, {}))
            for name, meta in metas
        ]

    def wipe(self) -> None:
        with self._connection() as db:
            db.execute("DELETE FROM metric_values")
            db.execute("DELETE FROM metric_meta")

    def close(self) -> None:
        """Close the persistent ``:memory:`` connection, if any."""
        with self._lock:
            if self._persistent_conn is not None:
                self._persistent_conn.close()
                self._persistent_conn = None
            self._initialized = False
