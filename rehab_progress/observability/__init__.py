"""Engine event log for plan lifecycle, alerts and case-status sync."""

from rehab_progress.observability.events import (
    AlertEvent,
    CaseSyncEvent,
    EngineEvent,
    EventType,
    OperationEvent,
    PlanEvent,
)
from rehab_progress.observability.logger import EngineEventLogger, get_event_logger

__all__ = [
    "AlertEvent",
    "CaseSyncEvent",
    "EngineEvent",
    "EngineEventLogger",
    "EventType",
    "OperationEvent",
    "PlanEvent",
    "get_event_logger",
]
