"""Plan lifecycle, daily completion and progress endpoints."""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from rehab_progress.api.dependencies import get_now, get_plan_service
from rehab_progress.plans.models import (
    ExerciseSpec,
    ExerciseStatus,
    PlanSettings,
    PlanSummary,
    ProgressStats,
    ProgressView,
    RehabilitationPlan,
    SkipReason,
)
from rehab_progress.plans.service import PlanService

router = APIRouter(prefix="/plans")


# ---------------------------------------------------------------------------
# Pydantic request/response schemas
# ---------------------------------------------------------------------------

class PlanCreate(BaseModel):
    case_id: str
    worker_id: str
    clinician_id: str
    name: str = "Recovery Plan"
    description: str = "Daily recovery exercises and activities"
    duration_days: float
    exercises: list[ExerciseSpec]
    start_date: Optional[date] = None
    settings: Optional[PlanSettings] = None


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    duration_days: float
    exercises: list[ExerciseSpec]
    settings: Optional[PlanSettings] = None


class CompletionIn(BaseModel):
    day: date = Field(alias="date")
    exercise_id: str
    outcome: ExerciseStatus
    pain_level: Optional[int] = Field(default=None, ge=0, le=10)
    notes: Optional[str] = None
    skip_reason: Optional[SkipReason] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)


class PlanCompletionResponse(BaseModel):
    plan: RehabilitationPlan
    case_status: Optional[str] = None
    reconciliation_pending: bool = True


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", response_model=RehabilitationPlan, status_code=201)
async def create_plan(
    body: PlanCreate,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> RehabilitationPlan:
    return await service.create_plan(
        case_id=body.case_id,
        worker_id=body.worker_id,
        clinician_id=body.clinician_id,
        name=body.name,
        description=body.description,
        duration_days=body.duration_days,
        exercises=body.exercises,
        start_date=body.start_date,
        settings=body.settings,
        now=now,
    )


@router.get("/summary", response_model=PlanSummary)
async def plan_summary(
    clinician_id: Optional[str] = Query(None),
    worker_id: Optional[str] = Query(None),
    service: PlanService = Depends(get_plan_service),
) -> PlanSummary:
    return await service.plan_summary(clinician_id=clinician_id, worker_id=worker_id)


@router.get("/{plan_id}", response_model=RehabilitationPlan)
async def get_plan(plan_id: str, service: PlanService = Depends(get_plan_service)) -> RehabilitationPlan:
    return await service.get_plan(plan_id)


@router.put("/{plan_id}", response_model=RehabilitationPlan)
async def edit_plan(
    plan_id: str,
    body: PlanUpdate,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> RehabilitationPlan:
    return await service.edit_plan(
        plan_id,
        name=body.name,
        description=body.description,
        duration_days=body.duration_days,
        exercises=body.exercises,
        settings=body.settings,
        now=now,
    )


@router.delete("/{plan_id}", status_code=204)
async def cancel_plan(plan_id: str, service: PlanService = Depends(get_plan_service)) -> Response:
    await service.cancel_plan(plan_id)
    return Response(status_code=204)


@router.post("/{plan_id}/complete", response_model=PlanCompletionResponse)
async def complete_plan(
    plan_id: str,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> PlanCompletionResponse:
    """Complete the plan. Case-status verification continues in the background."""
    completion = await service.complete_plan(plan_id, now)
    return PlanCompletionResponse(
        plan=completion.plan,
        case_status=completion.case_status,
        reconciliation_pending=not completion.reconciliation.done(),
    )


@router.post("/{plan_id}/completions", response_model=ProgressStats)
async def record_completion(
    plan_id: str,
    body: CompletionIn,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> ProgressStats:
    return await service.record_completion(
        plan_id,
        body.day,
        body.exercise_id,
        body.outcome,
        now=now,
        pain_level=body.pain_level,
        notes=body.notes,
        skip_reason=body.skip_reason,
        duration_minutes=body.duration_minutes,
    )


@router.post("/{plan_id}/days/{day}/complete", response_model=ProgressStats)
async def complete_day(
    plan_id: str,
    day: date,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> ProgressStats:
    return await service.complete_day(plan_id, day, now)


@router.get("/{plan_id}/progress", response_model=ProgressView)
async def get_progress(
    plan_id: str,
    service: PlanService = Depends(get_plan_service),
    now: datetime = Depends(get_now),
) -> ProgressView:
    return await service.get_progress(plan_id, now)


@router.post("/{plan_id}/recompute", response_model=ProgressStats)
async def recompute(plan_id: str, service: PlanService = Depends(get_plan_service)) -> ProgressStats:
    return await service.recompute(plan_id)
