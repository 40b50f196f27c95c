"""Probe and metrics endpoints for the platform's health checks and scraper."""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from eventsphere import container
from eventsphere.obs import health

router = APIRouter(tags=["ops"])


@router.get("/health/live")
async def live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready", responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "A dependency is down"}})
async def ready() -> JSONResponse:
	code, report = await health.readiness(container.get_scanner(), container.get_job_queue())
	return JSONResponse(report, status_code=code)


@router.get("/metrics", include_in_schema=False)
async def metrics_endpoint() -> Response:
	return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
