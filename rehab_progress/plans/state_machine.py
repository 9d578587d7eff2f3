"""Plan lifecycle rules: creation, edits and the active -> completed transition.

The state machine validates and mutates plan models only. Persistence, the
one-plan-per-case check, locking and notifications belong to the service.
"""

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from rehab_progress.plans.calendar import as_utc, local_date, resolve_timezone
from rehab_progress.plans.errors import InvalidStateTransition, ValidationError
from rehab_progress.plans.models import (
    DailyCompletion,
    ExerciseCompletionRecord,
    ExerciseSpec,
    PlanEdit,
    PlanSpec,
    PlanStatus,
    ProgressStats,
    RehabilitationPlan,
    new_id,
)

logger = logging.getLogger(__name__)

MIN_DURATION_DAYS = 1
MAX_DURATION_DAYS = 365


def normalize_duration(value) -> int:
    """Validate a duration in days, rounding fractional values half-up."""
    if value is None or isinstance(value, bool):
        raise ValidationError("duration_days is required", field="duration_days")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"duration_days is not a number: {value!r}", field="duration_days") from exc
    if not number.is_finite() or number < MIN_DURATION_DAYS or number > MAX_DURATION_DAYS:
        raise ValidationError(
            f"duration_days must be between {MIN_DURATION_DAYS} and {MAX_DURATION_DAYS}, got {value}",
            field="duration_days",
        )
    rounded = int(number.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(MIN_DURATION_DAYS, min(MAX_DURATION_DAYS, rounded))


def normalize_exercises(
    exercises: list[ExerciseSpec],
    previous: Optional[list[ExerciseSpec]] = None,
) -> list[ExerciseSpec]:
    """Drop blank-named entries and give every exercise an id.

    With ``previous``, an entry without an id inherits the id of the previous
    exercise at the same position.
    """
    named = [e for e in exercises if e.name and e.name.strip()]
    if not named:
        raise ValidationError("A plan needs at least one named exercise", field="exercises")

    explicit = {e.id for e in named if e.id}
    used: set[str] = set()
    result: list[ExerciseSpec] = []
    for position, exercise in enumerate(named):
        exercise_id = exercise.id
        if not exercise_id and previous and position < len(previous):
            inherited = previous[position].id
            if inherited and inherited not in explicit and inherited not in used:
                exercise_id = inherited
        if not exercise_id or exercise_id in used:
            exercise_id = new_id()
        used.add(exercise_id)
        result.append(exercise.model_copy(update={"id": exercise_id, "name": exercise.name.strip()}))
    return result


def align_records(day: DailyCompletion, exercises: list[ExerciseSpec]) -> None:
    """Seed new exercises pending and drop records of removed ones."""
    day.records = [
        day.record_for(exercise.id) or ExerciseCompletionRecord(exercise_id=exercise.id)
        for exercise in exercises
    ]


def resync_day(day: DailyCompletion, exercises: list[ExerciseSpec], now: datetime) -> bool:
    """Align an unlocked day with the exercise list, locking it if now fully completed."""
    if day.locked:
        return False
    align_records(day, exercises)
    if day.all_completed:
        day.locked = True
        day.locked_at = now
        return True
    return False


class PlanStateMachine:
    """Applies lifecycle transitions to plan models."""

    def __init__(self, tz=None) -> None:
        self.tz = resolve_timezone(tz)

    @staticmethod
    def ensure_active(plan: RehabilitationPlan, action: str) -> None:
        if plan.status.is_terminal:
            raise InvalidStateTransition(
                f"Cannot {action} plan {plan.id} in status {plan.status.value!r}",
                plan_id=plan.id,
                status=plan.status.value,
            )

    def create(self, spec: PlanSpec, now: datetime) -> RehabilitationPlan:
        """Build a new active plan from a clinician's form."""
        duration = normalize_duration(spec.duration_days)
        exercises = normalize_exercises(spec.exercises)
        start = spec.start_date or local_date(now, self.tz)
        stamp = as_utc(now, self.tz)

        plan = RehabilitationPlan(
            case_id=spec.case_id,
            worker_id=spec.worker_id,
            clinician_id=spec.clinician_id,
            name=spec.name.strip() or "Recovery Plan",
            description=spec.description,
            exercises=exercises,
            duration_days=duration,
            start_date=start,
            status=PlanStatus.ACTIVE,
            settings=spec.settings,
            progress_stats=ProgressStats(total_days=duration),
            created_at=stamp,
            updated_at=stamp,
        )
        logger.debug("Built plan %s for case %s (%d days)", plan.id, plan.case_id, duration)
        return plan

    def edit(self, plan: RehabilitationPlan, edit: PlanEdit, now: datetime) -> list[date]:
        """Apply a clinician edit in place. Returns days that became locked."""
        self.ensure_active(plan, "edit")
        duration = normalize_duration(edit.duration_days)
        exercises = normalize_exercises(edit.exercises, previous=plan.exercises)

        if edit.name is not None and edit.name.strip():
            plan.name = edit.name.strip()
        if edit.description is not None:
            plan.description = edit.description
        if edit.settings is not None:
            plan.settings = edit.settings
        plan.exercises = exercises
        plan.duration_days = duration

        kept: list[DailyCompletion] = []
        newly_locked: list[date] = []
        for day in plan.daily_completions:
            if day.locked:
                kept.append(day)
                continue
            if day.day > plan.last_day:
                logger.info("Dropping unlocked day %s outside the shortened plan %s", day.day, plan.id)
                continue
            if resync_day(day, exercises, as_utc(now, self.tz)):
                newly_locked.append(day.day)
            kept.append(day)
        plan.daily_completions = sorted(kept, key=lambda d: d.day)
        plan.updated_at = as_utc(now, self.tz)
        return newly_locked

    def complete(self, plan: RehabilitationPlan, now: datetime) -> None:
        """Move an active plan to completed."""
        self.ensure_active(plan, "complete")
        plan.status = PlanStatus.COMPLETED
        plan.end_date = local_date(now, self.tz)
        plan.updated_at = as_utc(now, self.tz)

    def ensure_cancellable(self, plan: RehabilitationPlan) -> None:
        self.ensure_active(plan, "cancel")
