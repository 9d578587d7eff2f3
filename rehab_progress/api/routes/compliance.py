"""Check-in recording and compliance scoring endpoints."""

from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from rehab_progress.api.dependencies import get_now, get_plan_service
from rehab_progress.plans.calendar import local_date
from rehab_progress.plans.models import CheckIn, ComplianceScore
from rehab_progress.plans.service import PlanService

router = APIRouter()

DEFAULT_WINDOW_DAYS = 30


class CheckInCreate(BaseModel):
    worker_id: str
    case_id: Optional[str] = None
    checked_in_at: Optional[datetime] = None
    exercise_completed: bool
    medication_taken: Optional[bool] = None
    pain_level: Optional[int] = Field(default=None, ge=0, le=10)
    notes: Optional[str] = None


@router.post("/check-ins", response_model=CheckIn, status_code=201)
async def record_check_in(
    body: CheckInCreate,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> CheckIn:
    return await service.record_check_in(
        worker_id=body.worker_id,
        case_id=body.case_id,
        checked_in_at=body.checked_in_at or now,
        exercise_completed=body.exercise_completed,
        medication_taken=body.medication_taken,
        pain_level=body.pain_level,
        notes=body.notes,
    )


@router.get("/compliance/workers/{worker_id}", response_model=ComplianceScore)
async def worker_compliance(
    worker_id: str,
    start: Optional[date] = Query(None, description="Defaults to 30 days before end"),
    end: Optional[date] = Query(None, description="Defaults to today"),
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> ComplianceScore:
    end = end or local_date(now, service.tz)
    start = start or end - timedelta(days=DEFAULT_WINDOW_DAYS - 1)
    return await service.compliance_score(worker_id, start, end)
