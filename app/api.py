"""HTTP route definitions for the exporter."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST

from app.schemas import HealthResponse, LastPoll
from services.poller import PollDriver

router = APIRouter()


def get_poller(request: Request) -> PollDriver:
    return request.app.state.poller


@router.get(
    "/metrics",
    summary="Prometheus text exposition of the latest gauge values.",
    response_class=Response,
)
async def metrics(poller: PollDriver = Depends(get_poller)) -> Response:
    return Response(content=poller.publisher.render(), media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint with the last poll outcome.",
    status_code=status.HTTP_200_OK,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": HealthResponse}},
)
async def healthcheck(
    response: Response, poller: PollDriver = Depends(get_poller)
) -> HealthResponse:
    last = poller.last_result
    last_poll = None
    if last is not None:
        last_poll = LastPoll(
            cycle=last.cycle,
            ok=last.ok,
            finished_at=last.finished_at,
            sensor_count=last.sensor_count,
            gauge_count=last.gauge_count,
            skipped_count=last.skipped_count,
            duration_ms=last.duration_ms,
            error=last.error,
        )
    failed = poller.has_failed
    if failed:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="failed" if failed else "ok",
        gateway=poller.client.base_url,
        poller_running=poller.is_running,
        registered_gauges=poller.publisher.gauge_count(),
        last_poll=last_poll,
        fatal_error=poller.fatal_error,
    )


@router.get(
    "/",
    summary="Root endpoint points at the metrics path.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "Metrics are served at /metrics."}
