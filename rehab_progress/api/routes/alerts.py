"""Alert listing and read-flag endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from rehab_progress.api.dependencies import get_plan_service
from rehab_progress.plans.models import Alert
from rehab_progress.plans.service import PlanService

router = APIRouter(prefix="/alerts")


@router.get("", response_model=list[Alert])
async def list_alerts(
    recipient_id: Optional[str] = Query(None),
    plan_id: Optional[str] = Query(None),
    unread_only: bool = Query(False),
    service: PlanService = Depends(get_plan_service),
) -> list[Alert]:
    return await service.list_alerts(recipient_id=recipient_id, unread_only=unread_only, plan_id=plan_id)


@router.post("/{alert_id}/read", response_model=Alert)
async def mark_alert_read(alert_id: str, service: PlanService = Depends(get_plan_service)) -> Alert:
    return await service.mark_alert_read(alert_id)
