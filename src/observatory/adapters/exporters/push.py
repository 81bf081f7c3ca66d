"""Push-based exporter delivering buffered records to a remote ingest API."""

import json
import logging
import threading
import time
import traceback
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import httpx

from observatory.core.config import ObservatoryConfig
from observatory.core.errors import exception_location, qualified_name
from observatory.core.metrics import sanitize_label, sanitize_name
from observatory.core.models import BufferEntry

logger = logging.getLogger(__name__)

INGEST_PATH = "/api/v1/ingest"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class BufferedPushExporter:
    """Exporter that batches records in memory and POSTs them in one request.

    Every recording call appends a :class:`BufferEntry`. The buffer is flushed
    inline by the call that fills it to ``batch_size`` or that finds
    ``batch_interval`` seconds elapsed since the last flush, or explicitly via
    :meth:`flush`. Delivery is best effort: a failed batch is logged and
    dropped, never retried.

    Without an API key the exporter still buffers, but every flush discards
    the batch without a request.
    """

    def __init__(
        self,
        config: ObservatoryConfig,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the exporter.

        Args:
            config: Root configuration; the ``push`` section is used.
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
            clock: Monotonic clock used for the flush interval.
        """
        self._config = config
        self._push = config.push
        self._clock = clock
        self._buffer: list[BufferEntry] = []
        self._lock = threading.Lock()
        self._last_flush = clock()
        self._client = httpx.Client(timeout=self._push.timeout, transport=transport)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

        if not self._push.api_key:
            logger.warning("Push exporter API key not configured; telemetry will not be sent")

    @property
    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def pending(self) -> list[BufferEntry]:
        """Copy of the entries awaiting delivery."""
        with self._lock:
            return list(self._buffer)

    def _add(self, kind: str, payload: dict[str, Any]) -> None:
        entry = BufferEntry(
            kind=kind,
            payload=payload,
            app_name=self._config.app_name,
            labels=dict(self._config.labels),
            enqueued_at=time.time(),
        )
        batch: list[BufferEntry] = []
        with self._lock:
            self._buffer.append(entry)
            due = self._clock() - self._last_flush >= self._push.batch_interval
            if len(self._buffer) >= self._push.batch_size or due:
                batch = self._take_locked()
        if batch:
            self._send(batch)

    def _take_locked(self) -> list[BufferEntry]:
        batch, self._buffer = self._buffer, []
        self._last_flush = self._clock()
        return batch

    def record_inbound(self, record: Mapping[str, Any]) -> None:
        self._add("inbound", dict(record))

    def record_outbound(self, record: Mapping[str, Any]) -> None:
        self._add("outbound", dict(record))

    def record_job(self, record: Mapping[str, Any]) -> None:
        self._add("job", dict(record))

    def record_exception(
        self, error: BaseException, context: Mapping[str, Any] | None = None
    ) -> None:
        file, line = exception_location(error)
        self._add(
            "exception",
            {
                "exception_class": qualified_name(type(error)),
                "message": str(error),
                "file": file,
                "line": line,
                "trace": "".join(traceback.format_tb(error.__traceback__)),
                "context": dict(context or {}),
                "timestamp": _now_iso(),
            },
        )

    def _metric(
        self, kind: str, name: str, value: float, labels: Mapping[str, Any] | None
    ) -> None:
        self._add(
            "metric",
            {
                "type": kind,
                "name": sanitize_name(name),
                "value": float(value),
                "labels": {
                    sanitize_name(str(k)): sanitize_label(v)
                    for k, v in (labels or {}).items()
                },
                "timestamp": _now_iso(),
            },
        )

    def increment_counter(
        self, name: str, labels: Mapping[str, Any] | None = None, value: float = 1.0
    ) -> None:
        self._metric("counter", name, value, labels)

    def set_gauge(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        self._metric("gauge", name, value, labels)

    def observe_histogram(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        self._metric("histogram", name, value, labels)

    def get_output(self) -> str:
        """JSON summary of the exporter state; records are pushed, not scraped."""
        return json.dumps(
            {
                "status": "push exporter active",
                "endpoint": self._push.endpoint,
                "project_id": self._push.project_id,
                "buffer_size": self.buffer_size,
            },
            indent=4,
        )

    def flush(self) -> None:
        """Deliver every buffered entry in one request and clear the buffer."""
        with self._lock:
            batch = self._take_locked()
        if batch:
            self._send(batch)

    def _send(self, batch: list[BufferEntry]) -> None:
        if not self._push.api_key:
            return
        url = self._push.endpoint.rstrip("/") + INGEST_PATH
        try:
            body = json.dumps(
                {
                    "project_id": self._push.project_id,
                    "data": [entry.to_dict() for entry in batch],
                },
                default=str,
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Cannot encode %d entries for %s: %s", len(batch), url, exc)
            return
        try:
            response = self._client.post(
                url,
                content=body,
                headers={
                    "Authorization": f"Bearer {self._push.api_key}",
                    "Content-Type": "application/json",
                    "X-Project-ID": self._push.project_id,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Error sending %d entries to %s: %s", len(batch), url, exc)
            return
        if not response.is_success:
            logger.warning(
                "Ingest endpoint rejected %d entries: status=%s body=%s",
                len(batch),
                response.status_code,
                response.text[:500],
            )

    def start_background_flush(self) -> None:
        """Flush every ``batch_interval`` seconds from a daemon thread."""
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="observatory-push-flush", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._push.batch_interval):
            try:
                self.flush()
            except Exception:
                logger.exception("Background flush failed")

    def close(self) -> None:
        """Stop the background thread, flush what is left and close the client."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._push.timeout + 1)
            self._thread = None
        self.flush()
        self._client.close()
