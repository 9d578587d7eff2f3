"""Time-series endpoint backing dashboard charts."""

from datetime import date, datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rehab_progress.analytics.timeseries import SeriesResult
from rehab_progress.api.dependencies import get_plan_service
from rehab_progress.plans.service import PlanService

router = APIRouter(prefix="/analytics")


class SeriesRequest(BaseModel):
    timestamps: list[Union[datetime, date]] = Field(default_factory=list)
    start: date
    end: date
    timezone: Optional[str] = Field(default=None, description="IANA name; defaults to the engine's local timezone")


@router.post("/series", response_model=SeriesResult)
async def get_series(body: SeriesRequest, service: PlanService = Depends(get_plan_service)) -> SeriesResult:
    """Bucket timestamps by day (windows up to 31 days) or by month."""
    return service.get_series(body.timestamps, body.start, body.end, body.timezone)
