"""Composition root wiring configuration, exporter, collectors and log writers."""

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from observatory.adapters.exporters import create_exporter
from observatory.adapters.frameworks.asgi import (
    ASGIApp,
    ObservatoryMiddleware,
    RequestIdMiddleware,
    create_metrics_app,
)
from observatory.adapters.http.httpx import AsyncObservedTransport, ObservedTransport
from observatory.core.collectors import InboundCollector, JobCollector, OutboundCollector
from observatory.core.config import ObservatoryConfig
from observatory.core.errors import telemetry_guard
from observatory.core.masking import SensitiveDataMasker
from observatory.core.models import RequestInfo
from observatory.core.ports import ExporterPort
from observatory.core.writers import (
    ExceptionLogger,
    InboundRequestLogger,
    JobLogger,
    OutboundRequestLogger,
)

logger = logging.getLogger(__name__)


class Observatory:
    """Builds every component once from one configuration and exposes them.

    Example:
        ```python
        observatory = create_observatory()
        app = observatory.asgi(app)
        client = httpx.Client(transport=observatory.http_transport())

        with observatory.jobs.track(JobInfo(job_id="1", name="Reindex")):
            reindex()
        ```
    """

    def __init__(
        self, config: ObservatoryConfig, exporter: ExporterPort | None = None
    ) -> None:
        self.config = config
        section = config.inbound_logger
        self.masker = SensitiveDataMasker(
            mask_fields=section.mask_fields,
            mask_replacement=section.mask_replacement,
            exclude_headers=section.exclude_headers,
        )
        self.exporter = exporter or create_exporter(config)

        self.inbound_logger = InboundRequestLogger(config, self.masker)
        self.outbound_logger = OutboundRequestLogger(config, self.masker)
        self.job_logger = JobLogger(config, self.masker)
        self.exception_logger = ExceptionLogger(config, self.masker)

        self.inbound = InboundCollector(config, self.exporter, self.inbound_logger)
        self.outbound = OutboundCollector(config, self.exporter, self.outbound_logger)
        self.jobs = JobCollector(config, self.exporter, self.job_logger)

    def increment(
        self, name: str, labels: Mapping[str, Any] | None = None, value: float = 1.0
    ) -> None:
        with telemetry_guard(f"incrementing {name}"):
            self.exporter.increment_counter(name, labels, value)

    def gauge(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        with telemetry_guard(f"setting {name}"):
            self.exporter.set_gauge(name, value, labels)

    def histogram(
        self, name: str, value: float, labels: Mapping[str, Any] | None = None
    ) -> None:
        with telemetry_guard(f"observing {name}"):
            self.exporter.observe_histogram(name, value, labels)

    def report_exception(
        self,
        error: BaseException,
        context: Mapping[str, Any] | None = None,
        request: RequestInfo | None = None,
    ) -> None:
        """Record the exception metric and write the exception log."""
        self.inbound.report_exception(error, context)
        with telemetry_guard("writing exception log"):
            self.exception_logger.log(error, context, request)

    def _on_request_exception(self, error: BaseException, request: RequestInfo) -> None:
        self.report_exception(error, request=request)

    def http_transport(
        self, transport: httpx.BaseTransport | None = None
    ) -> ObservedTransport:
        """Sync httpx transport recording every outbound call."""
        return ObservedTransport(self.outbound, transport)

    def async_http_transport(
        self, transport: httpx.AsyncBaseTransport | None = None
    ) -> AsyncObservedTransport:
        """Async httpx transport recording every outbound call."""
        return AsyncObservedTransport(self.outbound, transport)

    def asgi(self, app: ASGIApp) -> ASGIApp:
        """Wrap an ASGI app with request-id propagation and request observation."""
        inbound = self.config.inbound
        section = self.config.inbound_logger
        capture_body = inbound.record_body or (section.enabled and section.log_body)
        observed = ObservatoryMiddleware(
            app,
            self.inbound,
            on_exception=self._on_request_exception,
            capture_body=capture_body,
            max_body_size=max(inbound.max_body_size, section.max_body_size),
        )
        return RequestIdMiddleware(observed, self.config.request_id)

    def metrics_app(self) -> ASGIApp:
        """ASGI app serving the exporter output at the configured endpoint."""
        return create_metrics_app(self.exporter, self.config.registry)

    def get_output(self) -> str:
        return self.exporter.get_output()

    def flush(self) -> None:
        with telemetry_guard("flushing exporter"):
            self.exporter.flush()

    def close(self) -> None:
        """Flush and release the exporter's resources."""
        close = getattr(self.exporter, "close", None)
        with telemetry_guard("closing exporter"):
            if close is not None:
                close()
            else:
                self.exporter.flush()


def create_observatory(config: ObservatoryConfig | None = None) -> Observatory:
    """Build an Observatory from ``config`` or, by default, the environment."""
    config = config or ObservatoryConfig.from_env()
    if config.exporter == "registry" and not config.registry.enabled:
        logger.info("Metrics registry disabled; metrics output will be empty")
    return Observatory(config)
