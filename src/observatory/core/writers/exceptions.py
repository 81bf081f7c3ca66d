"""Structured log records for unhandled exceptions."""

import logging
from collections.abc import Mapping
from typing import Any

from observatory.core.config import ObservatoryConfig
from observatory.core.context import get_log_context
from observatory.core.errors import (
    exception_code,
    exception_location,
    format_exception_chain,
    format_stack_trace,
    is_ignored_exception,
    previous_exception,
    qualified_name,
    severity_of,
)
from observatory.core.masking import SensitiveDataMasker
from observatory.core.models import RequestInfo
from observatory.core.tracking import memory_usage
from observatory.core.writers.base import LogWriter, capture_body, log_label, now_iso, to_mb

SEVERITY_LEVELS = {
    "critical": logging.CRITICAL,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ExceptionLogger(LogWriter):
    """Writes an ``EXCEPTION`` record for each reported exception.

    The record level follows the exception's severity: ``critical`` for
    instances of ``critical_exceptions``, ``warning`` for instances of
    ``warning_exceptions``, ``error`` otherwise.
    """

    event = "EXCEPTION"

    def __init__(self, config: ObservatoryConfig, masker: SensitiveDataMasker) -> None:
        super().__init__(config, config.exception_logger, masker)

    def log(
        self,
        error: BaseException,
        context: Mapping[str, Any] | None = None,
        request: RequestInfo | None = None,
    ) -> None:
        if not self.is_enabled() or not self.should_log(error):
            return
        data = self.build_log_data(error, context, request)
        self.write(SEVERITY_LEVELS[data["labels"]["severity"]], data)

    def should_log(self, error: BaseException) -> bool:
        section = self._config.exception_logger
        return not is_ignored_exception(error, section.ignore, section.ignore_patterns)

    def severity(self, error: BaseException) -> str:
        section = self._config.exception_logger
        return severity_of(error, section.critical_exceptions, section.warning_exceptions)

    def build_log_data(
        self,
        error: BaseException,
        context: Mapping[str, Any] | None = None,
        request: RequestInfo | None = None,
    ) -> dict[str, Any]:
        section = self._config.exception_logger
        log_context = get_log_context()
        if request is None and isinstance(log_context.get("request"), RequestInfo):
            request = log_context["request"]

        file, line = exception_location(error)
        data: dict[str, Any] = {
            "request_id": log_context.get("request_id")
            or (request.request_id if request is not None else None),
            "exception_class": qualified_name(type(error)),
            "message": str(error),
            "code": exception_code(error),
            "file": file,
            "line": line,
            "timestamp": now_iso(),
        }

        if section.log_request_context and request is not None:
            data["request"] = self._request_context(request)

        if section.log_user and request is not None and request.user_id is not None:
            user: dict[str, Any] = {"id": request.user_id}
            workspace = {k.lower(): v for k, v in request.headers.items()}.get(
                "x-workspace-id"
            )
            if workspace:
                user["workspace_id"] = workspace
            data["user"] = user

        if section.log_stack_trace:
            data["trace"] = format_stack_trace(
                error, section.max_stack_frames, with_arguments=section.log_arguments
            )

        previous = previous_exception(error)
        if section.log_previous and previous is not None:
            data["previous"] = format_exception_chain(previous, section.max_previous_depth)

        if context:
            data["context"] = self.masker.mask(context)

        if section.log_memory:
            data["memory"] = {"used_mb": to_mb(memory_usage())}

        data["labels"] = {
            **section.labels,
            "exception_class": log_label(type(error).__name__),
            "severity": self.severity(error),
        }
        return data

    def _request_context(self, request: RequestInfo) -> dict[str, Any]:
        section = self._config.exception_logger
        data: dict[str, Any] = {
            "method": request.method,
            "url": self.masker.mask_url(request.url),
            "path": request.relative_path,
            "ip": request.ip,
            "user_agent": request.user_agent,
        }
        if request.route:
            data["route"] = request.route
        if section.log_request_headers:
            data["headers"] = self.masker.filter_headers(request.headers)
        if section.log_request_body and request.body:
            data["body"] = capture_body(
                self.masker,
                request.body,
                self._config.inbound_logger.max_body_size,
                request.content_type,
            )
        return data
