"""Collector for inbound HTTP requests."""

import fnmatch
from collections.abc import Mapping
from typing import Any

from observatory.core.collectors.base import masked_text, report_exception
from observatory.core.config import ObservatoryConfig
from observatory.core.errors import telemetry_guard
from observatory.core.models import RequestInfo, ResponseInfo
from observatory.core.ports import ExporterPort
from observatory.core.tracking import StartTracker
from observatory.core.writers.base import now_iso
from observatory.core.writers.inbound import InboundRequestLogger


class InboundCollector:
    """Times inbound requests and hands the finished record to the exporter.

    ``start`` and ``end`` are correlated through :attr:`RequestInfo.tracking_key`,
    so concurrent requests never share a start snapshot. The request log is
    written through the inbound logger, which applies its own filters.

    Example:
        ```python
        collector.start(request)
        response = handle(request)
        collector.end(request, response)
        ```
    """

    def __init__(
        self,
        config: ObservatoryConfig,
        exporter: ExporterPort,
        writer: InboundRequestLogger,
        tracker: StartTracker | None = None,
    ) -> None:
        self._config = config
        self._exporter = exporter
        self.writer = writer
        self._tracker = tracker or StartTracker(ttl=config.tracking_ttl)

    @property
    def tracker(self) -> StartTracker:
        return self._tracker

    def is_enabled(self) -> bool:
        return self._config.enabled and self._config.inbound.enabled

    def should_monitor(self, request: RequestInfo) -> bool:
        """True if the method is monitored and no exclude pattern matches the path."""
        inbound = self._config.inbound
        if request.method.upper() not in inbound.methods:
            return False
        path = request.relative_path
        return not any(fnmatch.fnmatchcase(path, p) for p in inbound.exclude_paths)

    def start(self, request: RequestInfo) -> None:
        if self.is_enabled() and self.should_monitor(request):
            self._tracker.start(request.tracking_key)
        with telemetry_guard("starting inbound request log"):
            self.writer.start(request)

    def end(
        self, request: RequestInfo, response: ResponseInfo
    ) -> dict[str, Any] | None:
        """Finish the observation of ``request``.

        Returns:
            The record handed to the exporter, or None if the request is not
            monitored.
        """
        record = None
        if self.is_enabled() and self.should_monitor(request):
            with telemetry_guard("recording inbound request"):
                record = self.build_record(request, response)
                self._exporter.record_inbound(record)
        with telemetry_guard("writing inbound request log"):
            self.writer.log(request, response)
        return record

    def build_record(
        self, request: RequestInfo, response: ResponseInfo
    ) -> dict[str, Any]:
        snap = self._tracker.finish(request.tracking_key)
        end = self._tracker.snapshot()
        record: dict[str, Any] = {
            "method": request.method.upper(),
            "uri": request.relative_path,
            "route": request.route or "unknown",
            "status_code": response.status_code,
            "duration": self._tracker.elapsed(snap),
            "memory": end.memory - snap.memory,
            "ip": request.ip,
            "user_agent": request.user_agent,
            "timestamp": now_iso(),
        }
        inbound = self._config.inbound
        if inbound.record_body:
            masker = self.writer.masker
            record["request_body"] = masked_text(
                masker, request.body, inbound.max_body_size, request.content_type
            )
            record["response_body"] = masked_text(
                masker,
                response.body,
                inbound.max_body_size,
                response.headers.get("content-type"),
            )
        record["labels"] = dict(self._config.labels)
        return record

    def report_exception(
        self, error: BaseException, context: Mapping[str, Any] | None = None
    ) -> bool:
        """Record the exception metric for an error raised while handling a request."""
        return report_exception(
            self._config, self._exporter, error, context, self.writer.masker
        )
