"""Structured log records for outbound HTTP calls."""

import logging
from typing import Any

import httpx

from observatory.core.config import ObservatoryConfig
from observatory.core.context import get_log_context
from observatory.core.errors import qualified_name
from observatory.core.masking import SensitiveDataMasker
from observatory.core.writers.base import LogWriter, capture_body, matches_any, to_ms


def _request_body(request: httpx.Request) -> bytes | None:
    try:
        return request.content
    except httpx.RequestNotRead:
        return None


def _response_body(response: httpx.Response) -> bytes | None:
    try:
        return response.content
    except httpx.ResponseNotRead:
        return None


class OutboundRequestLogger(LogWriter):
    """Writes an ``HTTP_OUTBOUND`` record for each call made by the application.

    Failed calls and responses with a status of 400 or more are written at
    ERROR level.
    """

    event = "HTTP_OUTBOUND"

    def __init__(self, config: ObservatoryConfig, masker: SensitiveDataMasker) -> None:
        super().__init__(config, config.outbound_logger, masker)

    def log(
        self,
        request: httpx.Request,
        response: httpx.Response | None,
        duration: float,
        error: BaseException | None = None,
    ) -> None:
        if not self.is_enabled():
            return
        if not self.should_log(request.url.host, response, duration):
            return

        data = self.build_log_data(request, response, duration, error)
        failed = error is not None or (response is not None and response.status_code >= 400)
        self.write(logging.ERROR if failed else logging.INFO, data)

    def should_log(
        self, host: str, response: httpx.Response | None, duration: float
    ) -> bool:
        section = self._config.outbound_logger
        if matches_any(host, section.exclude_hosts, ignore_case=True):
            return False
        if section.slow_threshold_ms > 0 and to_ms(duration) < section.slow_threshold_ms:
            return False
        status = response.status_code if response is not None else 0
        if section.only_status_codes and status not in section.only_status_codes:
            return False
        return True

    def detect_service(self, host: str) -> str:
        """Name the remote service from the ``services`` map or the domain."""
        for pattern, service in self._config.outbound_logger.services.items():
            if matches_any(host, (pattern,), ignore_case=True):
                return service
        parts = host.split(".")
        if len(parts) >= 2:
            return parts[-2]
        return host

    def build_log_data(
        self,
        request: httpx.Request,
        response: httpx.Response | None,
        duration: float,
        error: BaseException | None = None,
    ) -> dict[str, Any]:
        section = self._config.outbound_logger
        host = request.url.host
        data: dict[str, Any] = {
            "request_id": get_log_context().get("request_id"),
            "type": "outbound",
            "service": self.detect_service(host),
            "method": request.method,
            "url": self.masker.mask_url(str(request.url)),
            "host": host,
            "path": request.url.path,
            "status_code": response.status_code if response is not None else 0,
            "duration_ms": to_ms(duration),
            "environment": self.environment,
        }

        if error is not None:
            data["error"] = {"class": qualified_name(type(error)), "message": str(error)}

        if section.log_body:
            data["request_body"] = capture_body(
                self.masker,
                _request_body(request),
                section.max_body_size,
                request.headers.get("content-type"),
            )
            if response is not None:
                data["response_body"] = capture_body(
                    self.masker,
                    _response_body(response),
                    section.max_body_size,
                    response.headers.get("content-type"),
                )

        return data
