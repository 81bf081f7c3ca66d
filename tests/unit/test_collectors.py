"""Unit tests for the inbound, outbound and job collectors."""

import json
from collections.abc import Iterator
from unittest.mock import Mock

import httpx
import pytest

from observatory.adapters.exporters.push import BufferedPushExporter
from observatory.core.collectors import InboundCollector, JobCollector, OutboundCollector
from observatory.core.collectors.jobs import FAILED, PROCESSED
from observatory.core.config import (
    ExceptionsConfig,
    InboundConfig,
    JobsConfig,
    ObservatoryConfig,
    OutboundConfig,
    PushConfig,
)
from observatory.core.masking import SensitiveDataMasker
from observatory.core.models import JobInfo, RequestInfo, ResponseInfo
from observatory.core.tracking import StartTracker
from observatory.core.writers import InboundRequestLogger, JobLogger, OutboundRequestLogger


class FakeClock:
    def __init__(self) -> None:
        self.now = 10.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def spy() -> Mock:
    return Mock()


def _inbound(config: ObservatoryConfig, spy: Mock, clock: FakeClock) -> InboundCollector:
    writer = InboundRequestLogger(config, SensitiveDataMasker())
    tracker = StartTracker(clock=clock, memory=lambda: 2048)
    return InboundCollector(config, spy, writer, tracker=tracker)


def _jobs(config: ObservatoryConfig, spy: Mock, clock: FakeClock) -> JobCollector:
    writer = JobLogger(config, SensitiveDataMasker())
    return JobCollector(config, spy, writer, tracker=StartTracker(clock=clock))


class TestInboundCollector:
    """Tests for InboundCollector."""

    @pytest.mark.core
    @pytest.mark.tier(1)
    @pytest.mark.parametrize(
        ("path", "monitored"),
        [
            ("/telescope/requests", False),
            ("/api/users", True),
            ("/health", False),
            ("/horizon", False),
            ("/", True),
        ],
    )
    def test_should_monitor_path_exclusion(
        self, spy: Mock, clock: FakeClock, path: str, monitored: bool
    ) -> None:
        collector = _inbound(ObservatoryConfig(), spy, clock)

        assert collector.should_monitor(RequestInfo("GET", path)) is monitored

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_unlisted_method_not_monitored(self, spy: Mock, clock: FakeClock) -> None:
        collector = _inbound(ObservatoryConfig(), spy, clock)

        assert not collector.should_monitor(RequestInfo("OPTIONS", "/api/users"))

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_end_hands_record_to_exporter(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(labels={"environment": "test"})
        collector = _inbound(config, spy, clock)
        request = RequestInfo(
            "get", "/api/users", route="users.index", ip="10.0.0.1", request_id="r-1"
        )

        collector.start(request)
        clock.now += 0.25
        record = collector.end(request, ResponseInfo(200))

        spy.record_inbound.assert_called_once_with(record)
        assert record["method"] == "GET"
        assert record["uri"] == "api/users"
        assert record["route"] == "users.index"
        assert record["status_code"] == 200
        assert record["duration"] == 0.25
        assert record["memory"] == 0
        assert record["labels"] == {"environment": "test"}
        assert "request_body" not in record

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_excluded_request_not_recorded(self, spy: Mock, clock: FakeClock) -> None:
        collector = _inbound(ObservatoryConfig(), spy, clock)
        request = RequestInfo("GET", "/metrics")

        collector.start(request)
        assert collector.end(request, ResponseInfo(200)) is None

        spy.record_inbound.assert_not_called()
        assert len(collector.tracker) == 0

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_disabled_collector_records_nothing(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(inbound=InboundConfig(enabled=False))
        collector = _inbound(config, spy, clock)
        request = RequestInfo("GET", "/api/users")

        collector.start(request)
        collector.end(request, ResponseInfo(200))

        spy.record_inbound.assert_not_called()

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_bodies_recorded_and_bounded(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(
            inbound=InboundConfig(record_body=True, max_body_size=4)
        )
        collector = _inbound(config, spy, clock)
        request = RequestInfo("POST", "/api/users", body=b"abcdefgh")

        record = collector.end(request, ResponseInfo(201, body=b"created"))

        assert record is not None
        assert record["request_body"] == "abcd"
        assert record["response_body"] == "crea"

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_exporter_failure_never_reaches_caller(
        self, spy: Mock, clock: FakeClock
    ) -> None:
        spy.record_inbound.side_effect = RuntimeError("exporter down")
        collector = _inbound(ObservatoryConfig(), spy, clock)
        request = RequestInfo("GET", "/api/users")

        collector.start(request)
        collector.end(request, ResponseInfo(200))

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_ignored_exception_not_reported(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(exceptions=ExceptionsConfig(ignore=(KeyError,)))
        collector = _inbound(config, spy, clock)

        assert collector.report_exception(KeyError("x")) is False
        assert collector.report_exception(ValueError("x")) is True
        spy.record_exception.assert_called_once()


class TestJobCollector:
    """Tests for JobCollector."""

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_end_without_start_does_not_raise(self, spy: Mock, clock: FakeClock) -> None:
        collector = _jobs(ObservatoryConfig(), spy, clock)

        record = collector.end(JobInfo(job_id="7", name="Reindex"), PROCESSED)

        assert record is not None
        assert record["duration"] >= 0

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_start_and_end_correlated_by_identity(
        self, spy: Mock, clock: FakeClock
    ) -> None:
        collector = _jobs(ObservatoryConfig(), spy, clock)
        first = JobInfo(job_id="1", name="Reindex", queue="search")
        second = JobInfo(job_id="2", name="Reindex", queue="search")

        collector.start(first)
        clock.now += 3
        collector.start(second)
        clock.now += 1

        assert collector.end(first, PROCESSED)["duration"] == 4  # type: ignore[index]
        assert collector.end(second, PROCESSED)["duration"] == 1  # type: ignore[index]

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_track_records_failure_and_reraises(
        self, spy: Mock, clock: FakeClock
    ) -> None:
        collector = _jobs(ObservatoryConfig(), spy, clock)
        job = JobInfo(job_id="9", name="SendInvoice", queue="mail")

        with pytest.raises(ConnectionError):
            with collector.track(job):
                raise ConnectionError("smtp down")

        record = spy.record_job.call_args.args[0]
        assert record["status"] == FAILED
        assert record["exception"]["class"] == "ConnectionError"
        assert record["exception"]["message"] == "smtp down"
        error, context = spy.record_exception.call_args.args
        assert isinstance(error, ConnectionError)
        assert context == {"job_name": "SendInvoice", "queue": "mail"}

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_track_records_success(self, spy: Mock, clock: FakeClock) -> None:
        collector = _jobs(ObservatoryConfig(), spy, clock)

        with collector.track(JobInfo(job_id="3", name="Reindex")):
            clock.now += 2

        record = spy.record_job.call_args.args[0]
        assert record["status"] == PROCESSED
        assert record["duration"] == 2
        spy.record_exception.assert_not_called()

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_excluded_job_not_recorded(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(jobs=JobsConfig(exclude_jobs=("Internal*",)))
        collector = _jobs(config, spy, clock)

        assert collector.end(JobInfo(job_id="1", name="InternalPing"), PROCESSED) is None
        spy.record_job.assert_not_called()

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_payload_recorded_when_enabled(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(jobs=JobsConfig(record_payload=True))
        collector = _jobs(config, spy, clock)
        job = JobInfo(job_id="1", name="Reindex", payload={"index": "products"})

        record = collector.end(job, PROCESSED)

        assert record is not None
        assert record["payload"] == '{"index": "products"}'


class TestOutboundCollector:
    """Tests for OutboundCollector."""

    def _collector(
        self, config: ObservatoryConfig, spy: Mock, clock: FakeClock
    ) -> OutboundCollector:
        writer = OutboundRequestLogger(config, SensitiveDataMasker())
        return OutboundCollector(config, spy, writer, clock=clock)

    @pytest.mark.core
    @pytest.mark.tier(1)
    @pytest.mark.parametrize(
        ("host", "monitored"),
        [("localhost", False), ("LOCALHOST", False), ("api.stripe.com", True)],
    )
    def test_should_monitor_host(
        self, spy: Mock, clock: FakeClock, host: str, monitored: bool
    ) -> None:
        collector = self._collector(ObservatoryConfig(), spy, clock)

        assert collector.should_monitor(host) is monitored

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_send_records_completed_call(self, spy: Mock, clock: FakeClock) -> None:
        collector = self._collector(ObservatoryConfig(), spy, clock)
        request = httpx.Request("POST", "https://api.stripe.com/v1/charges")

        def send(req: httpx.Request) -> httpx.Response:
            clock.now += 0.5
            return httpx.Response(402, request=req)

        response = collector.send(request, send)

        assert response.status_code == 402
        record = spy.record_outbound.call_args.args[0]
        assert record["method"] == "POST"
        assert record["host"] == "api.stripe.com"
        assert record["path"] == "/v1/charges"
        assert record["status_code"] == 402
        assert record["duration"] == 0.5

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_send_records_failure_and_reraises(
        self, spy: Mock, clock: FakeClock
    ) -> None:
        collector = self._collector(ObservatoryConfig(), spy, clock)
        request = httpx.Request("GET", "https://api.example.com/items")

        def send(req: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=req)

        with pytest.raises(httpx.ConnectTimeout):
            collector.send(request, send)

        record = spy.record_outbound.call_args.args[0]
        assert record["status_code"] == 0
        assert record["error"] == "timed out"

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_excluded_host_not_recorded(self, spy: Mock, clock: FakeClock) -> None:
        collector = self._collector(ObservatoryConfig(), spy, clock)
        request = httpx.Request("GET", "http://localhost:8000/ping")

        collector.send(request, lambda req: httpx.Response(200, request=req))

        spy.record_outbound.assert_not_called()

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_bodies_recorded_when_enabled(self, spy: Mock, clock: FakeClock) -> None:
        config = ObservatoryConfig(outbound=OutboundConfig(record_body=True))
        collector = self._collector(config, spy, clock)
        request = httpx.Request("POST", "https://api.example.com/items", json={"a": 1})

        collector.send(
            request, lambda req: httpx.Response(201, request=req, content=b"created")
        )

        record = spy.record_outbound.call_args.args[0]
        assert json.loads(record["request_body"]) == {"a": 1}
        assert record["response_body"] == "created"


class TestMaskedExport:
    """Bodies, payloads, URLs and contexts reach the push buffer masked."""

    @pytest.fixture
    def push(self) -> Iterator[BufferedPushExporter]:
        config = ObservatoryConfig(exporter="push", push=PushConfig(batch_size=100))
        exporter = BufferedPushExporter(config)
        yield exporter
        exporter.close()

    @staticmethod
    def _buffered_text(exporter: BufferedPushExporter) -> str:
        return json.dumps([entry.to_dict() for entry in exporter.pending()], default=str)

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_inbound_bodies_masked(
        self, push: BufferedPushExporter, clock: FakeClock
    ) -> None:
        config = ObservatoryConfig(inbound=InboundConfig(record_body=True))
        collector = _inbound(config, push, clock)  # type: ignore[arg-type]
        request = RequestInfo(
            "POST",
            "/login",
            body=b"user=bob&password=hunter2",
            content_type="application/x-www-form-urlencoded",
        )
        response = ResponseInfo(
            200,
            headers={"content-type": "application/json"},
            body=b'{"access_token": "tok-789", "user": "bob"}',
        )

        collector.end(request, response)

        [entry] = push.pending()
        assert entry.payload["request_body"].startswith("user=bob&password=")
        assert json.loads(entry.payload["response_body"])["user"] == "bob"
        buffered = self._buffered_text(push)
        assert "hunter2" not in buffered
        assert "tok-789" not in buffered

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_outbound_url_and_body_masked(
        self, push: BufferedPushExporter, clock: FakeClock
    ) -> None:
        config = ObservatoryConfig(outbound=OutboundConfig(record_body=True))
        writer = OutboundRequestLogger(config, SensitiveDataMasker())
        collector = OutboundCollector(config, push, writer, clock=clock)
        request = httpx.Request(
            "POST",
            "https://api.example.com/charge?api_key=k-123",
            json={"amount": 5, "card": {"cvv": "cvv-4242"}},
        )

        collector.send(request, lambda req: httpx.Response(200, request=req))

        buffered = self._buffered_text(push)
        assert "k-123" not in buffered
        assert "cvv-4242" not in buffered
        assert '\\"amount\\": 5' in buffered

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_job_payload_masked(
        self, push: BufferedPushExporter, clock: FakeClock
    ) -> None:
        config = ObservatoryConfig(jobs=JobsConfig(record_payload=True))
        collector = _jobs(config, push, clock)  # type: ignore[arg-type]
        job = JobInfo(
            job_id="1", name="SyncCrm", payload={"account": 7, "api_secret": "s-1"}
        )

        collector.end(job, PROCESSED)

        [entry] = push.pending()
        assert json.loads(entry.payload["payload"]) == {
            "account": 7,
            "api_secret": "********",
        }

    @pytest.mark.core
    @pytest.mark.tier(1)
    def test_exception_context_masked(
        self, push: BufferedPushExporter, clock: FakeClock
    ) -> None:
        collector = _inbound(ObservatoryConfig(), push, clock)  # type: ignore[arg-type]

        collector.report_exception(ValueError("bad"), {"order": 1, "password": "p"})

        [entry] = push.pending()
        assert entry.payload["context"] == {"order": 1, "password": "********"}
