"""Redis metrics storage adapter.

Key layout (all keys carry the configured prefix):

- ``<prefix>metrics``: hash of metric full name to identity JSON.
- ``<prefix>values:<full name>``: hash of encoded series key to value.
"""

import json
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import redis

from observatory.adapters.storage.base import build_family, decode_series, encode_series
from observatory.core.errors import StorageUnavailableError
from observatory.core.metrics import histogram_updates
from observatory.core.models import MetricFamily, MetricIdentity

logger = logging.getLogger(__name__)


class RedisMetricsStorage:
    """Redis implementation of MetricsStoragePort.

    The client is created and pinged on :meth:`connect`, never in the
    constructor, so building the adapter for a disabled exporter opens no
    connection. Any ``redis.RedisError`` is raised as
    :class:`StorageUnavailableError`.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 6379,
        password: str | None = None,
        database: int = 0,
        prefix: str = "observatory:",
        socket_timeout: float = 2.0,
        client: Any = None,
        client_factory: Callable[..., Any] = redis.Redis,
    ) -> None:
        """Initialize the adapter.

        Args:
            host: Redis host.
            port: Redis port.
            password: Optional password.
            database: Database index.
            prefix: Prefix for every key written.
            socket_timeout: Connect and read timeout in seconds.
            client: Ready-made client; skips ``client_factory``.
            client_factory: Callable building the client from connection kwargs.
        """
        self._host = host
        self._port = port
        self._password = password
        self._database = database
        self._prefix = prefix
        self._socket_timeout = socket_timeout
        self._client = client
        self._client_factory = client_factory
        self._connected = False
        self._lock = threading.Lock()

    @property
    def _meta_key(self) -> str:
        return f"{self._prefix}metrics"

    def _values_key(self, identity: MetricIdentity) -> str:
        return f"{self._prefix}values:{identity.full_name}"

    def connect(self) -> None:
        """Create the client and check the server answers ``PING``.

        Raises:
            StorageUnavailableError: If the server cannot be reached.
        """
        if self._connected:
            return
        with self._lock:
            if self._connected:
                return
            if self._client is None:
                self._client = self._client_factory(
                    host=self._host,
                    port=self._port,
                    password=self._password,
                    db=self._database,
                    socket_timeout=self._socket_timeout,
                    socket_connect_timeout=self._socket_timeout,
                    decode_responses=True,
                )
            try:
                self._client.ping()
            except redis.RedisError as exc:
                raise StorageUnavailableError(
                    f"cannot reach redis at {self._host}:{self._port}: {exc}"
                ) from exc
            self._connected = True
            logger.debug("Connected to redis at %s:%s", self._host, self._port)

    @contextmanager
    def _redis(self) -> Iterator[Any]:
        self.connect()
        try:
            yield self._client
        except redis.RedisError as exc:
            raise StorageUnavailableError(f"redis command failed: {exc}") from exc

    def register(self, identity: MetricIdentity) -> MetricIdentity:
        """Register a metric; the first identity stored under a name wins."""
        with self._redis() as client:
            client.hsetnx(self._meta_key, identity.full_name, json.dumps(identity.to_dict()))
            stored = client.hget(self._meta_key, identity.full_name)
        if stored is None:
            return identity
        return MetricIdentity.from_dict(json.loads(stored))

    def increment(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        field = encode_series(("", label_values, None))
        with self._redis() as client:
            client.hincrbyfloat(self._values_key(identity), field, value)

    def set(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        field = encode_series(("", label_values, None))
        with self._redis() as client:
            client.hset(self._values_key(identity), field, repr(float(value)))

    def observe(
        self, identity: MetricIdentity, label_values: tuple[str, ...], value: float
    ) -> None:
        key = self._values_key(identity)
        with self._redis() as client:
            pipe = client.pipeline(transaction=True)
            for series, amount in histogram_updates(identity, label_values, value):
                pipe.hincrbyfloat(key, encode_series(series), amount)
            pipe.execute()

    def collect(self) -> list[MetricFamily]:
        families = []
        with self._redis() as client:
            metas = client.hgetall(self._meta_key)
            for name in sorted(metas):
                identity = MetricIdentity.from_dict(json.loads(metas[name]))
                stored = client.hgetall(self._values_key(identity))
                series = {decode_series(k): float(v) for k, v in stored.items()}
                families.append(build_family(identity, series))
        return families

    def wipe(self) -> None:
        with self._redis() as client:
            metas = client.hgetall(self._meta_key)
            keys = [f"{self._prefix}values:{name}" for name in metas]
            client.delete(self._meta_key, *keys)

    def close(self) -> None:
        with self._lock:
            if self._client is not None and self._connected:
                self._client.close()
            self._connected = False
