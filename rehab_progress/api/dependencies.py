"""FastAPI dependencies."""

from datetime import datetime, timezone

from fastapi import HTTPException, Request

from rehab_progress.plans.service import PlanService


def get_plan_service(request: Request) -> PlanService:
    """The service built by the application lifespan."""
    service = getattr(request.app.state, "plan_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Plan service not initialised")
    return service


def get_now() -> datetime:
    """Current instant; overridden in tests to pin the calendar."""
    return datetime.now(timezone.utc)
