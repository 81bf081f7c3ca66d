"""httpx transports observing every outbound call.

Example:
    ```python
    client = httpx.Client(transport=ObservedTransport(collector))
    async_client = httpx.AsyncClient(transport=AsyncObservedTransport(collector))
    ```
"""

import httpx

from observatory.core.collectors.outbound import OutboundCollector


class ObservedTransport(httpx.BaseTransport):
    """Sync transport handing each request to an OutboundCollector.

    Wraps ``transport`` (default: ``httpx.HTTPTransport()``).
    """

    def __init__(
        self,
        collector: OutboundCollector,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._collector = collector
        self._transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._collector.send(request, self._transport.handle_request)

    def close(self) -> None:
        self._transport.close()


class AsyncObservedTransport(httpx.AsyncBaseTransport):
    """Async transport handing each request to an OutboundCollector."""

    def __init__(
        self,
        collector: OutboundCollector,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._collector = collector
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._collector.send_async(
            request, self._transport.handle_async_request
        )

    async def aclose(self) -> None:
        await self._transport.aclose()
