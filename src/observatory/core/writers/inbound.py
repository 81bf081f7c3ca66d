"""Structured log records for inbound HTTP requests."""

import logging
from typing import Any

from observatory.core.config import ObservatoryConfig
from observatory.core.masking import SensitiveDataMasker
from observatory.core.models import RequestInfo, ResponseInfo
from observatory.core.tracking import StartTracker
from observatory.core.writers.base import LogWriter, capture_body, matches_any, to_mb, to_ms


class InboundRequestLogger(LogWriter):
    """Writes an ``HTTP_REQUEST`` record for each completed request.

    Requests on excluded paths, faster than ``slow_threshold_ms`` or with a
    status outside ``only_status_codes`` are skipped. Responses with a status
    of 500 or more are written at ERROR level.
    """

    event = "HTTP_REQUEST"

    def __init__(
        self,
        config: ObservatoryConfig,
        masker: SensitiveDataMasker,
        tracker: StartTracker | None = None,
    ) -> None:
        super().__init__(config, config.inbound_logger, masker)
        self._tracker = tracker or StartTracker(ttl=config.tracking_ttl)

    def start(self, request: RequestInfo) -> None:
        if self.is_enabled():
            self._tracker.start(request.tracking_key)

    def log(self, request: RequestInfo, response: ResponseInfo) -> None:
        if not self.is_enabled():
            return
        snap = self._tracker.finish(request.tracking_key)
        duration_ms = to_ms(self._tracker.elapsed(snap))
        if not self.should_log(request, response, duration_ms):
            return

        level = logging.ERROR if response.status_code >= 500 else logging.INFO
        self.write(level, self.build_log_data(request, response, duration_ms))

    def should_log(
        self, request: RequestInfo, response: ResponseInfo, duration_ms: float
    ) -> bool:
        section = self._config.inbound_logger
        if matches_any(request.relative_path, section.exclude_paths):
            return False
        if section.slow_threshold_ms > 0 and duration_ms < section.slow_threshold_ms:
            return False
        if section.only_status_codes and response.status_code not in section.only_status_codes:
            return False
        return True

    def build_log_data(
        self, request: RequestInfo, response: ResponseInfo, duration_ms: float
    ) -> dict[str, Any]:
        section = self._config.inbound_logger
        data: dict[str, Any] = {
            "request_id": request.request_id,
            "type": "inbound",
            "method": request.method,
            "url": self.masker.mask_url(request.url),
            "path": request.relative_path,
            "route": request.route or "unknown",
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "ip": request.ip,
            "user_agent": request.user_agent,
            "memory_mb": to_mb(self._tracker.snapshot().memory),
        }

        if request.user_id is not None:
            data["user_id"] = request.user_id

        headers = {k.lower(): v for k, v in request.headers.items()}
        for header, field_name in section.custom_headers.items():
            value = headers.get(header.lower())
            if value is not None:
                data[field_name] = value

        if section.log_headers:
            data["headers"] = self.masker.filter_headers(request.headers)

        if section.log_body:
            data["request_body"] = capture_body(
                self.masker, request.body, section.max_body_size, request.content_type
            )

        if request.query:
            normalized = self.masker.normalize(
                request.query, section.max_query_items, section.max_query_depth
            )
            data["query_params"] = self.masker.mask(normalized)

        data["environment"] = self.environment
        return data
