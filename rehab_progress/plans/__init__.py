"""Rehabilitation plans: lifecycle, daily completions, statistics and alerts."""

from rehab_progress.plans.errors import (
    AlertNotFound,
    CollaboratorError,
    ConcurrentModification,
    DayLocked,
    DuplicatePlanConflict,
    InvalidStateTransition,
    PartialSyncWarning,
    PlanNotFound,
    RehabEngineError,
    UnknownExercise,
    ValidationError,
)
from rehab_progress.plans.models import (
    Alert,
    AlertType,
    DailyCompletion,
    DayStatus,
    ExerciseCompletionRecord,
    ExerciseSpec,
    ExerciseStatus,
    PlanStatus,
    ProgressStats,
    RehabilitationPlan,
)

__all__ = [
    "Alert",
    "AlertNotFound",
    "AlertType",
    "CollaboratorError",
    "ConcurrentModification",
    "DailyCompletion",
    "DayLocked",
    "DayStatus",
    "DuplicatePlanConflict",
    "ExerciseCompletionRecord",
    "ExerciseSpec",
    "ExerciseStatus",
    "InvalidStateTransition",
    "PartialSyncWarning",
    "PlanNotFound",
    "PlanStatus",
    "ProgressStats",
    "RehabEngineError",
    "RehabilitationPlan",
    "UnknownExercise",
    "ValidationError",
]
