"""ASGI generic adapter: observing middleware, request ids and the metrics endpoint.

This adapter works with any ASGI server (uvicorn, hypercorn, daphne) and any
ASGI framework without requiring FastAPI as a dependency.
"""

import base64
import binascii
import secrets
import uuid
from collections.abc import Callable, Coroutine
from typing import Any
from urllib.parse import parse_qs

from observatory.core.collectors.inbound import InboundCollector
from observatory.core.config import RegistryConfig, RequestIdConfig
from observatory.core.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
    update_log_context,
)
from observatory.core.errors import telemetry_guard
from observatory.core.models import RequestInfo, ResponseInfo
from observatory.core.ports import ExporterPort


# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

ExceptionHook = Callable[[BaseException, RequestInfo], None]

METRICS_CONTENT_TYPE = "text/plain; charset=utf-8"


def _headers(scope: Scope) -> dict[str, str]:
    """Decode ASGI headers; repeated headers are joined with ``", "``."""
    headers: dict[str, str] = {}
    for raw_name, raw_value in scope.get("headers", []):
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    return headers


def _header(scope: Scope, name: str) -> str | None:
    """Value of header ``name`` (case-insensitive), or None."""
    wanted = name.lower().encode("latin-1")
    for raw_name, raw_value in scope.get("headers", []):
        if raw_name.lower() == wanted:
            return str(raw_value.decode("latin-1"))
    return None


def _parse_query_params(scope: Scope) -> dict[str, Any]:
    """Parse the query string; single values are unwrapped from their list."""
    query_string = scope.get("query_string", b"").decode(errors="replace")
    parsed = parse_qs(query_string, keep_blank_values=True)
    return {k: v[0] if len(v) == 1 else v for k, v in parsed.items()}


def _url(scope: Scope, headers: dict[str, str]) -> str:
    scheme = scope.get("scheme", "http")
    host = headers.get("host")
    if host is None and scope.get("server"):
        server_host, port = scope["server"]
        host = f"{server_host}:{port}" if port else server_host
    url = f"{scheme}://{host or 'localhost'}{scope.get('root_path', '')}{scope['path']}"
    query_string = scope.get("query_string", b"")
    if query_string:
        url += "?" + query_string.decode("latin-1")
    return url


def _route(scope: Scope) -> str | None:
    """Route template resolved by the framework (FastAPI/Starlette set ``scope["route"]``)."""
    route = scope.get("route")
    if route is None:
        return None
    return getattr(route, "path", None) or getattr(route, "name", None)


def _user_id(scope: Scope) -> str | int | None:
    user = scope.get("user")
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return getattr(user, "identity", None) or getattr(user, "id", None)


def request_info_from_scope(scope: Scope) -> RequestInfo:
    """Build a RequestInfo from an HTTP scope (body is filled in later)."""
    headers = _headers(scope)
    client = scope.get("client")
    return RequestInfo(
        method=scope.get("method", "GET"),
        path=scope["path"],
        url=_url(scope, headers),
        route=_route(scope),
        headers=headers,
        query=_parse_query_params(scope),
        content_type=headers.get("content-type"),
        ip=client[0] if client else None,
        user_agent=headers.get("user-agent"),
        user_id=_user_id(scope),
        request_id=scope.get("state", {}).get("request_id"),
    )


async def _send_response(
    send: Send,
    status: int,
    content_type: str,
    body: str,
    extra_headers: list[tuple[bytes, bytes]] | None = None,
) -> None:
    """Send an HTTP response with headers and body."""
    headers = [(b"content-type", content_type.encode())]
    headers.extend(extra_headers or [])
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": body.encode()})


class RequestIdMiddleware:
    """Propagates a request id from header to log context and back to the response.

    The id is read from ``config.header`` or, when missing and
    ``generate_if_missing`` is set, generated as a UUID4. It is stored in
    ``scope["state"]["request_id"]``.
    """

    def __init__(self, app: ASGIApp, config: RequestIdConfig | None = None) -> None:
        self.app = app
        self.config = config or RequestIdConfig()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.config.enabled:
            await self.app(scope, receive, send)
            return

        request_id = _header(scope, self.config.header)
        if not request_id and self.config.generate_if_missing:
            request_id = str(uuid.uuid4())

        if not request_id:
            await self.app(scope, receive, send)
            return

        scope.setdefault("state", {})["request_id"] = request_id
        if self.config.include_in_log_context:
            update_log_context(request_id=request_id)

        header = self.config.header.lower().encode("latin-1")

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start" and self.config.include_in_response:
                headers = [
                    (k, v) for k, v in message.get("headers", []) if k.lower() != header
                ]
                headers.append((header, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        finally:
            if self.config.include_in_log_context:
                clear_log_context()


class ObservatoryMiddleware:
    """ASGI middleware running the inbound collector around each request.

    Request and response bodies are buffered (up to ``max_body_size``) only
    when ``capture_body`` is set. An exception raised by the wrapped app is
    recorded as a 500 response, reported through ``on_exception`` and
    re-raised unchanged.
    """

    def __init__(
        self,
        app: ASGIApp,
        collector: InboundCollector,
        on_exception: ExceptionHook | None = None,
        capture_body: bool = False,
        max_body_size: int = 64000,
    ) -> None:
        self.app = app
        self.collector = collector
        self.on_exception = on_exception
        self.capture_body = capture_body
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = request_info_from_scope(scope)
        request_body = bytearray()
        response_body = bytearray()
        captured: dict[str, Any] = {"status": None, "headers": {}}

        async def wrapped_receive() -> dict[str, Any]:
            message = await receive()
            if self.capture_body and message["type"] == "http.request":
                room = self.max_body_size - len(request_body)
                if room > 0:
                    request_body.extend(message.get("body", b"")[:room])
            return message

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
                captured["headers"] = {
                    k.decode("latin-1"): v.decode("latin-1")
                    for k, v in message.get("headers", [])
                }
            elif message["type"] == "http.response.body" and self.capture_body:
                room = self.max_body_size - len(response_body)
                if room > 0:
                    response_body.extend(message.get("body", b"")[:room])
            await send(message)

        previous_context = get_log_context()
        update_log_context(request=request)
        self.collector.start(request)
        try:
            await self.app(scope, wrapped_receive, wrapped_send)
        except Exception as exc:
            status = captured["status"] or 500
            self._finish(scope, request, status, captured, request_body, response_body)
            if self.on_exception is not None:
                with telemetry_guard("reporting request exception"):
                    self.on_exception(exc, request)
            raise
        else:
            self._finish(
                scope,
                request,
                captured["status"] or 500,
                captured,
                request_body,
                response_body,
            )
        finally:
            set_log_context(**previous_context)

    def _finish(
        self,
        scope: Scope,
        request: RequestInfo,
        status: int,
        captured: dict[str, Any],
        request_body: bytearray,
        response_body: bytearray,
    ) -> None:
        request.route = _route(scope) or request.route
        request.user_id = _user_id(scope) or request.user_id
        request.body = bytes(request_body)
        response = ResponseInfo(
            status_code=status, headers=captured["headers"], body=bytes(response_body)
        )
        self.collector.end(request, response)


def check_basic_auth(scope: Scope, username: str, password: str) -> bool:
    """True if the request carries matching HTTP Basic credentials."""
    authorization = _header(scope, "authorization")
    if not authorization:
        return False
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic":
        return False
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    given_user, sep, given_password = decoded.partition(":")
    if not sep:
        return False
    user_ok = secrets.compare_digest(given_user.encode(), username.encode())
    password_ok = secrets.compare_digest(given_password.encode(), password.encode())
    return user_ok and password_ok


def create_metrics_app(exporter: ExporterPort, config: RegistryConfig) -> ASGIApp:
    """Create an ASGI app serving ``exporter.get_output()`` at ``config.endpoint``.

    Args:
        exporter: Exporter whose output is served.
        config: Registry configuration (endpoint and Basic Auth).

    Returns:
        ASGI application callable.
    """

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        if scope["path"] != config.endpoint:
            await _send_response(send, 404, "text/plain", "Not Found")
            return

        if scope.get("method", "GET") not in ("GET", "HEAD"):
            await _send_response(
                send, 405, "text/plain", "Method Not Allowed", [(b"allow", b"GET")]
            )
            return

        auth = config.auth
        if auth.enabled and not check_basic_auth(scope, auth.username, auth.password):
            await _send_response(
                send,
                401,
                "text/plain",
                "Unauthorized",
                [(b"www-authenticate", b'Basic realm="Metrics"')],
            )
            return

        await _send_response(send, 200, METRICS_CONTENT_TYPE, exporter.get_output())

    return app
