"""Error taxonomy for plan operations."""

from typing import Optional


class RehabEngineError(Exception):
    """Base exception for engine errors."""

    code = "engine_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Serialise for API error bodies."""
        return {"error": self.code, "detail": self.message, **self.details}


class ValidationError(RehabEngineError, ValueError):
    """Malformed input such as an out-of-range duration or an empty exercise list."""

    code = "validation_error"


class PlanNotFound(RehabEngineError):
    """No plan exists with the requested id."""

    code = "plan_not_found"


class AlertNotFound(RehabEngineError):
    """No alert exists with the requested id."""

    code = "alert_not_found"


class DuplicatePlanConflict(RehabEngineError):
    """The case already holds a plan."""

    code = "duplicate_plan"


class InvalidStateTransition(RehabEngineError):
    """The plan's status does not allow the requested operation."""

    code = "invalid_state_transition"


class DayLocked(RehabEngineError):
    """Every exercise of the day is completed; the day can no longer change."""

    code = "day_locked"


class UnknownExercise(RehabEngineError):
    """The exercise id is not in the plan's current exercise list."""

    code = "unknown_exercise"


class ConcurrentModification(RehabEngineError):
    """The plan was written by another process between load and save."""

    code = "concurrent_modification"


class CollaboratorError(RehabEngineError):
    """The case store or notification service could not be reached."""

    code = "collaborator_error"


class PartialSyncWarning(RehabEngineError):
    """The case did not reach the expected status after plan completion.

    Never raised out of plan completion; carried on the sync outcome.
    """

    code = "partial_sync"

    def __init__(
        self,
        case_id: str,
        expected_status: str,
        observed_status: Optional[str],
        repaired: bool,
    ):
        super().__init__(
            f"Case {case_id} status is {observed_status!r} after plan completion "
            f"(expected {expected_status!r}); corrective update "
            f"{'applied' if repaired else 'failed'}",
            case_id=case_id,
            expected_status=expected_status,
            observed_status=observed_status,
            repaired=repaired,
        )
        self.case_id = case_id
        self.expected_status = expected_status
        self.observed_status = observed_status
        self.repaired = repaired
