"""FastAPI adapter for the metrics endpoint."""

import secrets

from fastapi import APIRouter, Depends, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from observatory.adapters.frameworks.asgi import METRICS_CONTENT_TYPE
from observatory.core.config import RegistryConfig
from observatory.core.ports import ExporterPort

_basic = HTTPBasic(auto_error=False)


def create_metrics_router(exporter: ExporterPort, config: RegistryConfig) -> APIRouter:
    """Create a FastAPI router serving the exporter output at ``config.endpoint``.

    Args:
        exporter: Exporter whose output is served.
        config: Registry configuration (endpoint and Basic Auth).

    Returns:
        APIRouter with the metrics endpoint configured.
    """
    router = APIRouter()

    @router.get(config.endpoint, include_in_schema=False)
    async def get_metrics(
        credentials: HTTPBasicCredentials | None = Depends(_basic),
    ) -> Response:
        """Return metrics in Prometheus text format."""
        auth = config.auth
        if auth.enabled and not _authorized(credentials, auth.username, auth.password):
            return Response(
                content="Unauthorized",
                status_code=401,
                headers={"WWW-Authenticate": 'Basic realm="Metrics"'},
                media_type="text/plain",
            )
        return Response(content=exporter.get_output(), media_type=METRICS_CONTENT_TYPE)

    return router


def _authorized(
    credentials: HTTPBasicCredentials | None, username: str, password: str
) -> bool:
    if credentials is None:
        return False
    user_ok = secrets.compare_digest(credentials.username.encode(), username.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), password.encode())
    return user_ok and password_ok
