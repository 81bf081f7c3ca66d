"""Shared test fixtures for all test modules."""

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest

from observatory.adapters.exporters.registry import RegistryExporter
from observatory.adapters.frameworks.asgi import Receive, Scope, Send
from observatory.adapters.storage.in_memory import InMemoryMetricsStorage
from observatory.core.config import ObservatoryConfig, RegistryConfig
from observatory.core.context import clear_log_context
from observatory.core.masking import SensitiveDataMasker


@pytest.fixture(autouse=True)
def _reset_log_context() -> Iterator[None]:
    """Every test starts and ends with an empty log context."""
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def metrics_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for metrics storage tests."""
    return str(tmp_path / "metrics.db")


@pytest.fixture
def config() -> ObservatoryConfig:
    """Configuration with the registry exporter enabled on memory storage."""
    return ObservatoryConfig(
        app_name="shop", registry=RegistryConfig(enabled=True, storage="memory")
    )


@pytest.fixture
def metrics_storage() -> InMemoryMetricsStorage:
    """Fixture providing an empty in-memory metrics storage."""
    return InMemoryMetricsStorage()


@pytest.fixture
def exporter(
    config: ObservatoryConfig, metrics_storage: InMemoryMetricsStorage
) -> RegistryExporter:
    """Registry exporter writing to the ``metrics_storage`` fixture."""
    return RegistryExporter(config, storage_factory=lambda _: metrics_storage)


@pytest.fixture
def masker() -> SensitiveDataMasker:
    return SensitiveDataMasker(
        mask_fields=("password", "card.number", "*.token"),
        exclude_headers=("authorization", "cookie"),
    )


@pytest.fixture
def channel_records(caplog: pytest.LogCaptureFixture) -> Callable[[str], list]:
    """Return a function listing the records captured on one log channel.

    Usage:
        def test_something(channel_records):
            writer.log(...)
            [record] = channel_records("observatory")
            assert record.context["status_code"] == 200
    """
    caplog.set_level(logging.DEBUG)

    def _records(channel: str) -> list[logging.LogRecord]:
        return [r for r in caplog.records if r.name == channel]

    return _records


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""

    def _scope(
        method: str = "GET",
        path: str = "/test",
        headers: list[tuple[bytes, bytes]] | None = None,
        query_string: bytes = b"",
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": query_string,
            "headers": headers or [],
        }

    return _scope


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
