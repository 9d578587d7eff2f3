"""Engine event logger writing JSON Lines files."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from rehab_progress.observability.events import (
    AlertEvent,
    CaseSyncEvent,
    EngineEvent,
    EventType,
    OperationEvent,
    PlanEvent,
)

logger = logging.getLogger(__name__)


class EngineEventLogger:
    """Central logger for plan lifecycle, alert and case-sync events.

    Writes structured events to JSON Lines files for later analysis and
    forwards every event to registered callbacks.
    """

    _instance: Optional["EngineEventLogger"] = None

    def __init__(self, log_dir: Optional[Path] = None, enabled: bool = True):
        """Initialize the event logger.

        Args:
            log_dir: Directory for log files (default: data/logs)
            enabled: Whether events are written and dispatched
        """
        self.enabled = enabled
        self.log_dir = Path(log_dir) if log_dir is not None else Path("data/logs")
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_files: dict[str, Path] = {
            "plans": self.log_dir / "plan_events.jsonl",
            "alerts": self.log_dir / "alerts.jsonl",
            "case_sync": self.log_dir / "case_sync.jsonl",
            "operations": self.log_dir / "operations.jsonl",
        }

        self._callbacks: list[Callable[[EngineEvent], None]] = []

    @classmethod
    def get_instance(cls) -> "EngineEventLogger":
        """Get or create the instance configured from settings."""
        if cls._instance is None:
            from rehab_progress.config import get_settings

            settings = get_settings()
            cls._instance = cls(log_dir=settings.event_log_dir, enabled=settings.event_log_enabled)
        return cls._instance

    def generate_request_id(self) -> str:
        return str(uuid.uuid4())[:8]

    def add_callback(self, callback: Callable[[EngineEvent], None]) -> None:
        """Add callback for real-time event monitoring."""
        self._callbacks.append(callback)

    def _write_event(self, event: EngineEvent, log_type: str) -> None:
        if not self.enabled:
            return

        try:
            log_file = self._log_files.get(log_type)
            if log_file:
                with open(log_file, "a") as f:
                    f.write(event.model_dump_json() + "\n")

            for callback in self._callbacks:
                try:
                    callback(event)
                except Exception as e:
                    logger.warning(f"Event callback failed: {e}")

        except OSError as e:
            logger.warning(f"Failed to write engine event: {e}")

    # Plan events

    def log_plan_event(
        self,
        event_type: EventType,
        plan_id: str,
        case_id: Optional[str] = None,
        status: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        event = PlanEvent(
            event_type=event_type,
            plan_id=plan_id,
            case_id=case_id,
            status=status,
            metadata=metadata,
        )
        self._write_event(event, "plans")

    def log_day_locked(self, plan_id: str, day: str) -> None:
        self._write_event(PlanEvent(event_type=EventType.DAY_LOCKED, plan_id=plan_id, day=day), "plans")

    def log_recompute(self, plan_id: str, completed_days: int, progress_percentage: int) -> None:
        event = PlanEvent(
            event_type=EventType.STATS_RECOMPUTED,
            plan_id=plan_id,
            completed_days=completed_days,
            progress_percentage=progress_percentage,
        )
        self._write_event(event, "plans")

    # Alerts and notifications

    def log_alert(self, plan_id: str, alert_type: str, recipient_id: str, trigger_key: str) -> None:
        event = AlertEvent(
            event_type=EventType.ALERT_RAISED,
            plan_id=plan_id,
            notification_type=alert_type,
            recipient_id=recipient_id,
            trigger_key=trigger_key,
        )
        self._write_event(event, "alerts")

    def log_notification_failure(self, recipient_id: str, notification_type: str, error: str) -> None:
        event = AlertEvent(
            event_type=EventType.NOTIFICATION_FAILED,
            recipient_id=recipient_id,
            notification_type=notification_type,
            error_message=error[:200],
        )
        self._write_event(event, "alerts")

    # Case status synchronisation

    def log_case_sync(
        self,
        case_id: str,
        expected_status: str,
        observed_status: Optional[str],
        repaired: Optional[bool] = None,
        plan_id: Optional[str] = None,
    ) -> None:
        diverged = observed_status not in ("return_to_work", "closed")
        event = CaseSyncEvent(
            event_type=EventType.CASE_SYNC_DIVERGENCE if diverged else EventType.CASE_SYNC_OK,
            case_id=case_id,
            plan_id=plan_id,
            expected_status=expected_status,
            observed_status=observed_status,
            repaired=repaired,
        )
        self._write_event(event, "case_sync")

    # Operation timing

    @contextmanager
    def operation(self, name: str, plan_id: Optional[str] = None, request_id: Optional[str] = None):
        """Context manager timing one service operation.

        Usage:
            with events.operation("record_completion", plan_id) as event:
                stats = ...
                event.metadata["completed_days"] = stats.completed_days
        """
        start_time = time.time()
        event = OperationEvent(
            event_type=EventType.OPERATION_START,
            operation=name,
            plan_id=plan_id,
            request_id=request_id or self.generate_request_id(),
        )

        try:
            yield event
            event.event_type = EventType.OPERATION_SUCCESS

        except Exception as e:
            event.event_type = EventType.OPERATION_ERROR
            event.error_type = type(e).__name__
            event.error_message = str(e)[:200]
            raise

        finally:
            event.duration_ms = (time.time() - start_time) * 1000
            self._write_event(event, "operations")

    # Utility methods

    def get_recent_events(self, log_type: str, limit: int = 100) -> list[dict[str, Any]]:
        """Read recent events from a log file."""
        log_file = self._log_files.get(log_type)
        if not log_file or not log_file.exists():
            return []

        events = []
        with open(log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self, log_type: str) -> dict[str, Any]:
        """Get basic statistics for a log type."""
        events = self.get_recent_events(log_type, limit=1000)
        if not events:
            return {"total": 0}

        total = len(events)
        errors = sum(1 for e in events if "error" in e.get("event_type", ""))
        durations = [e["duration_ms"] for e in events if e.get("duration_ms") is not None]

        return {
            "total": total,
            "errors": errors,
            "error_rate": errors / total,
            "avg_duration_ms": sum(durations) / len(durations) if durations else 0.0,
        }


def get_event_logger() -> EngineEventLogger:
    """Get the global engine event logger instance."""
    return EngineEventLogger.get_instance()
