"""Example FastAPI application observed by observatory.

Run with:
    OBSERVATORY_PROMETHEUS_ENABLED=true uvicorn examples.fastapi_example:app --reload

Endpoints:
    /                - Hello endpoint
    /orders/{id}     - Calls a (mocked) payment API through an observed httpx client
    /jobs/reindex    - Runs a tracked background job
    /metrics         - Prometheus text format

Log lines are written as JSON to stdout on the "observatory" channel.
"""

import asyncio

import httpx
from fastapi import FastAPI

from observatory import JobInfo, configure_channel, create_observatory
from observatory.adapters.frameworks.fastapi import create_metrics_router

configure_channel("observatory")
observatory = create_observatory()


def payments(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"status": "paid"})


payments_client = httpx.AsyncClient(
    base_url="https://payments.example.com",
    transport=observatory.async_http_transport(httpx.MockTransport(payments)),
)

api = FastAPI(title="Observatory Example")
api.include_router(create_metrics_router(observatory.exporter, observatory.config.registry))


@api.get("/")
async def root() -> dict[str, str]:
    return {"message": "Hello! Check /metrics and stdout."}


@api.get("/orders/{order_id}")
async def get_order(order_id: int) -> dict[str, object]:
    response = await payments_client.get(f"/v1/orders/{order_id}")
    observatory.increment("orders_viewed", {"source": "api"})
    return {"id": order_id, "payment": response.json()}


@api.post("/jobs/reindex")
async def reindex() -> dict[str, str]:
    with observatory.jobs.track(JobInfo(job_id="1", name="Reindex", queue="default")):
        await asyncio.sleep(0.05)
    return {"status": "done"}


@api.on_event("shutdown")
async def shutdown() -> None:
    await payments_client.aclose()
    observatory.close()


app = observatory.asgi(api)
