"""Structured engine events written to the JSONL event log."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of engine events."""

    PLAN_CREATED = "plan_created"
    PLAN_EDITED = "plan_edited"
    PLAN_COMPLETED = "plan_completed"
    PLAN_CANCELLED = "plan_cancelled"
    DAY_LOCKED = "day_locked"
    STATS_RECOMPUTED = "stats_recomputed"
    ALERT_RAISED = "alert_raised"
    NOTIFICATION_FAILED = "notification_failed"
    CASE_SYNC_OK = "case_sync_ok"
    CASE_SYNC_DIVERGENCE = "case_sync_divergence"
    OPERATION_START = "operation_start"
    OPERATION_SUCCESS = "operation_success"
    OPERATION_ERROR = "operation_error"


class EngineEvent(BaseModel):
    """Base class for all engine events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PlanEvent(EngineEvent):
    """Lifecycle change, day lock or recompute on one plan."""

    plan_id: str
    case_id: Optional[str] = None
    status: Optional[str] = None
    day: Optional[str] = None
    completed_days: Optional[int] = None
    progress_percentage: Optional[int] = None


class AlertEvent(EngineEvent):
    """Alert raised, or a notification that could not be delivered."""

    recipient_id: str
    notification_type: str
    plan_id: Optional[str] = None
    trigger_key: Optional[str] = None
    error_message: Optional[str] = None


class CaseSyncEvent(EngineEvent):
    """Outcome of the read-back after a plan completion."""

    case_id: str
    plan_id: Optional[str] = None
    expected_status: str
    observed_status: Optional[str] = None
    repaired: Optional[bool] = None


class OperationEvent(EngineEvent):
    """Timing and outcome of one service operation."""

    operation: str
    plan_id: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
