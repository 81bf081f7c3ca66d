"""End-to-end tests for the Observatory composition root."""

import logging
from collections.abc import Callable

import httpx
import pytest

from observatory import (
    BufferedPushExporter,
    JobInfo,
    Observatory,
    ObservatoryConfig,
    RegistryExporter,
    create_observatory,
)
from observatory.core.config import (
    ExceptionLoggerConfig,
    JobLoggerConfig,
    OutboundLoggerConfig,
    PushConfig,
    RegistryConfig,
)
from observatory.core.context import update_log_context

Records = Callable[[str], list[logging.LogRecord]]


@pytest.fixture
def observatory() -> Observatory:
    config = ObservatoryConfig(
        app_name="shop",
        registry=RegistryConfig(enabled=True),
        job_logger=JobLoggerConfig(enabled=True),
        exception_logger=ExceptionLoggerConfig(enabled=True),
    )
    return Observatory(config)


def stripe(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/v1/fail":
        raise httpx.ConnectError("connection reset", request=request)
    return httpx.Response(200, json={"object": "balance"})


class TestOutboundTransports:
    """httpx clients built on the observed transports."""

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_sync_client_calls_recorded(
        self, observatory: Observatory, channel_records: Records
    ) -> None:
        update_log_context(request_id="req-7")
        transport = observatory.http_transport(httpx.MockTransport(stripe))

        with httpx.Client(transport=transport) as client:
            response = client.get("https://api.stripe.com/v1/balance")

        assert response.json() == {"object": "balance"}
        assert (
            'shop_http_outbound_requests_total{method="GET",host="api.stripe.com",'
            'status_code="200"} 1' in observatory.get_output()
        )
        [record] = channel_records("observatory")
        assert record.getMessage() == "HTTP_OUTBOUND"
        assert record.context["service"] == "stripe"  # type: ignore[attr-defined]
        assert record.context["request_id"] == "req-7"  # type: ignore[attr-defined]

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_sync_client_failure_recorded_with_status_zero(
        self, observatory: Observatory
    ) -> None:
        transport = observatory.http_transport(httpx.MockTransport(stripe))

        with httpx.Client(transport=transport) as client:
            with pytest.raises(httpx.ConnectError):
                client.get("https://api.stripe.com/v1/fail")

        assert 'host="api.stripe.com",status_code="0"} 1' in observatory.get_output()

    @pytest.mark.integration
    @pytest.mark.tier(2)
    async def test_async_client_calls_recorded(self, observatory: Observatory) -> None:
        transport = observatory.async_http_transport(httpx.MockTransport(stripe))

        async with httpx.AsyncClient(transport=transport) as client:
            await client.post("https://api.stripe.com/v1/charges", json={"amount": 100})

        assert (
            'shop_http_outbound_requests_total{method="POST",host="api.stripe.com",'
            'status_code="200"} 1' in observatory.get_output()
        )

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_response_body_logged_when_enabled(self, channel_records: Records) -> None:
        observatory = Observatory(
            ObservatoryConfig(outbound_logger=OutboundLoggerConfig(log_body=True))
        )
        transport = observatory.http_transport(httpx.MockTransport(stripe))

        with httpx.Client(transport=transport) as client:
            client.get("https://api.stripe.com/v1/balance")

        [record] = channel_records("observatory")
        assert record.context["response_body"] == {"object": "balance"}  # type: ignore[attr-defined]


class TestJobsAndCustomMetrics:
    """Jobs, exceptions and custom metrics through the composition root."""

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_job_tracked_end_to_end(
        self, observatory: Observatory, channel_records: Records
    ) -> None:
        job = JobInfo(job_id="11", name="SendInvoice", queue="mail")

        with pytest.raises(TimeoutError):
            with observatory.jobs.track(job):
                raise TimeoutError("smtp timeout")

        output = observatory.get_output()
        assert (
            'shop_jobs_processed_total{job_name="SendInvoice",queue="mail",'
            'status="failed"} 1' in output
        )
        assert 'shop_exceptions_total{exception_class="TimeoutError"' in output
        [record] = channel_records("observatory")
        assert record.getMessage() == "JOB_PROCESSED"
        assert record.levelno == logging.ERROR

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_custom_metrics(self, observatory: Observatory) -> None:
        observatory.increment("orders", {"region": "eu"})
        observatory.increment("orders", {"region": "eu"}, value=2)
        observatory.gauge("queue_depth", 12)
        observatory.histogram("basket_value", 0.2)

        output = observatory.get_output()

        assert 'shop_orders{region="eu"} 3' in output
        assert "shop_queue_depth 12" in output
        assert "shop_basket_value_count 1" in output

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_report_exception_writes_metric_and_log(
        self, observatory: Observatory, channel_records: Records
    ) -> None:
        try:
            raise PermissionError("forbidden")
        except PermissionError as exc:
            observatory.report_exception(exc, {"order_id": 5})

        assert 'exception_class="PermissionError"' in observatory.get_output()
        [record] = channel_records("observatory")
        assert record.levelno == logging.WARNING
        assert record.context["context"] == {"order_id": 5}  # type: ignore[attr-defined]

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_disabled_observatory_records_nothing(self) -> None:
        observatory = Observatory(
            ObservatoryConfig(enabled=False, registry=RegistryConfig(enabled=True))
        )

        with observatory.jobs.track(JobInfo(job_id="1", name="Reindex")):
            pass
        observatory.increment("orders")

        assert observatory.get_output() == ""


class TestCreateObservatory:
    """Tests for create_observatory()."""

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_NAME", "billing")
        monkeypatch.setenv("OBSERVATORY_PROMETHEUS_ENABLED", "true")

        observatory = create_observatory()

        assert observatory.config.app_name == "billing"
        assert isinstance(observatory.exporter, RegistryExporter)
        assert "billing_http_requests_total" in observatory.get_output()

    @pytest.mark.integration
    @pytest.mark.tier(2)
    def test_push_exporter_closed_with_flush(self) -> None:
        sent: list[httpx.Request] = []

        def ingest(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(202)

        config = ObservatoryConfig(
            exporter="push", push=PushConfig(api_key="k", project_id="p")
        )
        exporter = BufferedPushExporter(config, transport=httpx.MockTransport(ingest))
        observatory = Observatory(config, exporter=exporter)

        observatory.increment("orders")
        observatory.close()

        assert len(sent) == 1
