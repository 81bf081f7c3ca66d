"""Collector for outbound HTTP calls made with httpx."""

import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from observatory.core.collectors.base import masked_text
from observatory.core.config import ObservatoryConfig
from observatory.core.errors import telemetry_guard
from observatory.core.ports import ExporterPort
from observatory.core.writers.base import matches_any, now_iso
from observatory.core.writers.outbound import OutboundRequestLogger


class OutboundCollector:
    """Measures outbound calls around an httpx send operation.

    :meth:`send` and :meth:`send_async` wrap the underlying send callable.
    A failed call is still recorded, with status 0 and the error message,
    and the original exception is re-raised unchanged.
    """

    def __init__(
        self,
        config: ObservatoryConfig,
        exporter: ExporterPort,
        writer: OutboundRequestLogger,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._config = config
        self._exporter = exporter
        self.writer = writer
        self._clock = clock

    def is_enabled(self) -> bool:
        return self._config.enabled and self._config.outbound.enabled

    def should_monitor(self, host: str) -> bool:
        """False if ``host`` matches an excluded host, ignoring case."""
        return not matches_any(host, self._config.outbound.exclude_hosts, ignore_case=True)

    def _monitored(self, request: httpx.Request) -> bool:
        return self.is_enabled() and self.should_monitor(request.url.host)

    def _wants_body(self) -> bool:
        return self._config.outbound.record_body or (
            self.writer.is_enabled() and self._config.outbound_logger.log_body
        )

    def _base_record(self, request: httpx.Request, started: float) -> dict[str, Any]:
        return {
            "method": request.method,
            "host": request.url.host,
            "path": request.url.path,
            "full_url": self.writer.masker.mask_url(str(request.url)),
            "duration": max(0.0, self._clock() - started),
            "timestamp": now_iso(),
        }

    def record(
        self, request: httpx.Request, response: httpx.Response, started: float
    ) -> dict[str, Any]:
        """Build and export the record of a completed call."""
        record = self._base_record(request, started)
        record["status_code"] = response.status_code
        outbound = self._config.outbound
        if outbound.record_body:
            masker = self.writer.masker
            record["request_body"] = masked_text(
                masker,
                _safe_content(request),
                outbound.max_body_size,
                request.headers.get("content-type"),
            )
            record["response_body"] = masked_text(
                masker,
                _safe_content(response),
                outbound.max_body_size,
                response.headers.get("content-type"),
            )
        record["labels"] = dict(self._config.labels)
        self._exporter.record_outbound(record)
        return record

    def record_error(
        self, request: httpx.Request, error: BaseException, started: float
    ) -> dict[str, Any]:
        """Build and export the record of a call that raised."""
        record = self._base_record(request, started)
        record["status_code"] = 0
        record["error"] = str(error) or type(error).__name__
        record["labels"] = dict(self._config.labels)
        self._exporter.record_outbound(record)
        return record

    def _completed(
        self, request: httpx.Request, response: httpx.Response, started: float
    ) -> None:
        duration = max(0.0, self._clock() - started)
        if self._monitored(request):
            with telemetry_guard("recording outbound request"):
                self.record(request, response, started)
        with telemetry_guard("writing outbound request log"):
            self.writer.log(request, response, duration)

    def _failed(
        self, request: httpx.Request, error: BaseException, started: float
    ) -> None:
        duration = max(0.0, self._clock() - started)
        if self._monitored(request):
            with telemetry_guard("recording outbound error"):
                self.record_error(request, error, started)
        with telemetry_guard("writing outbound request log"):
            self.writer.log(request, None, duration, error)

    def send(
        self,
        request: httpx.Request,
        send: Callable[[httpx.Request], httpx.Response],
    ) -> httpx.Response:
        """Call ``send(request)`` and observe it."""
        started = self._clock()
        try:
            response = send(request)
        except Exception as exc:
            self._failed(request, exc, started)
            raise
        if self._wants_body():
            response.read()
        self._completed(request, response, started)
        return response

    async def send_async(
        self,
        request: httpx.Request,
        send: Callable[[httpx.Request], Awaitable[httpx.Response]],
    ) -> httpx.Response:
        """Await ``send(request)`` and observe it."""
        started = self._clock()
        try:
            response = await send(request)
        except Exception as exc:
            self._failed(request, exc, started)
            raise
        if self._wants_body():
            await response.aread()
        self._completed(request, response, started)
        return response


def _safe_content(message: httpx.Request | httpx.Response) -> bytes:
    try:
        return message.content
    except (httpx.RequestNotRead, httpx.ResponseNotRead):
        return b""
