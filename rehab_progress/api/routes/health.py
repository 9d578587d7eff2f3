"""Liveness and readiness probes.

``/health/ready`` answers 503 until the plan service is up and its database
answers.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rehab_progress import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


def _not_ready(*errors: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "not_ready", "errors": list(errors)})


@router.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "service": "rehab-progress", "version": __version__}


@router.get("/health/ready")
async def readiness_check(request: Request):
    service = getattr(request.app.state, "plan_service", None)
    if service is None:
        return _not_ready("Plan service not initialised")

    try:
        await service.ping()
    except Exception as e:
        logger.warning("Readiness probe failed: %s", e)
        return _not_ready(f"Database check failed: {e}")

    return {
        "status": "ready",
        "timezone": str(service.tz),
        "case_store": type(service.case_store).__name__,
        "notifications": type(service.notifications).__name__,
        "event_log": "enabled" if service.events.enabled else "disabled",
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    return {"status": "alive"}
