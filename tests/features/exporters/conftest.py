"""BDD step definitions for exporter features."""

import json
from dataclasses import dataclass, field

import httpx
import pytest
from pytest_bdd import given, parsers, then, when

from observatory.adapters.exporters.push import BufferedPushExporter
from observatory.adapters.exporters.registry import RegistryExporter
from observatory.core.config import (
    ObservatoryConfig,
    PushConfig,
    RedisConfig,
    RegistryConfig,
)
from observatory.core.ports import ExporterPort


@dataclass
class ExporterScenarioContext:
    """State shared by the steps of one scenario."""

    requests: list[httpx.Request] = field(default_factory=list)
    exporter: ExporterPort | None = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(202)


@pytest.fixture
def ctx():
    """Fresh scenario context for each test; closes a push exporter afterwards."""
    context = ExporterScenarioContext()
    yield context
    if isinstance(context.exporter, BufferedPushExporter):
        context.exporter.close()


def _push(ctx: ExporterScenarioContext, size: int, api_key: str) -> None:
    config = ObservatoryConfig(
        exporter="push",
        push=PushConfig(api_key=api_key, project_id="proj", batch_size=size),
    )
    ctx.exporter = BufferedPushExporter(config, transport=httpx.MockTransport(ctx.handle))


# === Push batching ===
@given("an ingest API that accepts every request")
def step_ingest_api(ctx: ExporterScenarioContext) -> None:
    ctx.requests.clear()


@given(parsers.re(r"a push exporter with batch size (?P<size>\d+)$"), converters={"size": int})
def step_push_exporter(ctx: ExporterScenarioContext, size: int) -> None:
    _push(ctx, size, api_key="secret")


@given(
    parsers.re(r"a push exporter with batch size (?P<size>\d+) and no API key$"),
    converters={"size": int},
)
def step_push_exporter_without_key(ctx: ExporterScenarioContext, size: int) -> None:
    _push(ctx, size, api_key="")


@when(parsers.parse("{n:d} counters are incremented"))
def step_increment(ctx: ExporterScenarioContext, n: int) -> None:
    assert ctx.exporter is not None
    for _ in range(n):
        ctx.exporter.increment_counter("orders_placed", {"region": "eu"})


@when("the exporter is flushed")
def step_flush(ctx: ExporterScenarioContext) -> None:
    assert ctx.exporter is not None
    ctx.exporter.flush()


@then(
    parsers.re(r"the ingest API received (?P<n>\d+) requests?$"), converters={"n": int}
)
def step_request_count(ctx: ExporterScenarioContext, n: int) -> None:
    assert len(ctx.requests) == n


@then(
    parsers.re(r"the last request carried (?P<n>\d+) entries$"), converters={"n": int}
)
def step_last_batch(ctx: ExporterScenarioContext, n: int) -> None:
    body = json.loads(ctx.requests[-1].content)
    assert len(body["data"]) == n


@then(
    parsers.re(r"(?P<n>\d+) (?:entry is|entries are) still buffered$"),
    converters={"n": int},
)
def step_buffered(ctx: ExporterScenarioContext, n: int) -> None:
    assert isinstance(ctx.exporter, BufferedPushExporter)
    assert ctx.exporter.buffer_size == n


# === Registry output ===
@given(parsers.parse('an enabled registry exporter for app "{app}"'))
def step_registry(ctx: ExporterScenarioContext, app: str) -> None:
    config = ObservatoryConfig(app_name=app, registry=RegistryConfig(enabled=True))
    ctx.exporter = RegistryExporter(config)


@given(
    parsers.parse('a disabled registry exporter using Redis at "{host}" port {port:d}')
)
def step_disabled_registry(ctx: ExporterScenarioContext, host: str, port: int) -> None:
    config = ObservatoryConfig(
        registry=RegistryConfig(
            enabled=False, storage="redis", redis=RedisConfig(host=host, port=port)
        )
    )
    ctx.exporter = RegistryExporter(config)


@when(
    parsers.parse(
        'an inbound request {method} "{route}" with status {status:d} '
        "taking {duration:g} seconds is recorded"
    )
)
def step_record_inbound(
    ctx: ExporterScenarioContext, method: str, route: str, status: int, duration: float
) -> None:
    assert ctx.exporter is not None
    ctx.exporter.record_inbound(
        {"method": method, "route": route, "status": status, "duration": duration}
    )


@then(
    parsers.parse(
        'the output contains "{name}" labelled {method}, {route} and {status}'
    )
)
def step_output_contains(
    ctx: ExporterScenarioContext, name: str, method: str, route: str, status: str
) -> None:
    assert ctx.exporter is not None
    labels = f'method="{method}",route="{route}",status_code="{status}"'
    assert f"{name}{{{labels}}} 1" in ctx.exporter.get_output()


@then("the output is empty")
def step_output_empty(ctx: ExporterScenarioContext) -> None:
    assert ctx.exporter is not None
    assert ctx.exporter.get_output() == ""
