"""Daily completion recording with the locked-day rule."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from rehab_progress.plans.calendar import as_utc, local_date, resolve_timezone
from rehab_progress.plans.errors import DayLocked, UnknownExercise, ValidationError
from rehab_progress.plans.models import (
    DailyCompletion,
    ExerciseCompletionRecord,
    ExerciseStatus,
    RehabilitationPlan,
    SkipReason,
)
from rehab_progress.plans.state_machine import PlanStateMachine, align_records

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    """What a recording call did to the plan's completions."""

    day: DailyCompletion
    changed: bool = True
    newly_locked: bool = False


class CompletionRecorder:
    """Upserts exercise outcomes into a plan's daily completions."""

    def __init__(self, tz=None) -> None:
        self.tz = resolve_timezone(tz)

    def record(
        self,
        plan: RehabilitationPlan,
        day: date,
        exercise_id: str,
        outcome: Union[ExerciseStatus, str],
        *,
        now: datetime,
        pain_level: Optional[int] = None,
        notes: Optional[str] = None,
        skip_reason: Optional[Union[SkipReason, str]] = None,
        duration_minutes: Optional[int] = None,
    ) -> RecordResult:
        """Record one exercise outcome for one day.

        Last write wins while the day is unlocked. On a locked day an identical
        completed resubmission is a no-op; anything else raises ``DayLocked``.
        """
        PlanStateMachine.ensure_active(plan, "record completions on")
        status = _parse_outcome(outcome)
        reason = _parse_skip_reason(skip_reason) if status == ExerciseStatus.SKIPPED else None
        self._check_day(plan, day, now)
        _check_pain(pain_level)
        if duration_minutes is not None and duration_minutes < 1:
            raise ValidationError("duration_minutes must be at least 1", field="duration_minutes")

        completion = plan.completion_for(day)
        if completion is not None and completion.locked:
            stored = completion.record_for(exercise_id)
            if stored is not None and _is_resubmission(stored, status, pain_level, notes, duration_minutes):
                return RecordResult(day=completion, changed=False)
            raise DayLocked(
                f"Day {day} of plan {plan.id} is locked",
                plan_id=plan.id,
                date=day.isoformat(),
            )

        if plan.find_exercise(exercise_id) is None:
            raise UnknownExercise(
                f"Exercise {exercise_id} is not part of plan {plan.id}",
                plan_id=plan.id,
                exercise_id=exercise_id,
            )

        completion = self._touch_day(plan, day)
        stamp = as_utc(now, self.tz)
        if status == ExerciseStatus.COMPLETED:
            record = ExerciseCompletionRecord(
                exercise_id=exercise_id,
                status=status,
                completed_at=stamp,
                pain_level=pain_level,
                pain_notes=notes,
                duration_minutes=duration_minutes,
            )
        else:
            record = ExerciseCompletionRecord(
                exercise_id=exercise_id,
                status=status,
                skipped_at=stamp,
                pain_level=pain_level,
                skip_reason=reason,
                skip_notes=notes,
            )
        completion.records = [record if r.exercise_id == exercise_id else r for r in completion.records]

        newly_locked = self._lock_if_complete(completion, stamp)
        if newly_locked:
            logger.info("Day %s of plan %s locked", day, plan.id)
        return RecordResult(day=completion, newly_locked=newly_locked)

    def complete_day(self, plan: RehabilitationPlan, day: date, *, now: datetime) -> RecordResult:
        """Mark every pending exercise of a day completed."""
        PlanStateMachine.ensure_active(plan, "record completions on")
        self._check_day(plan, day, now)

        completion = plan.completion_for(day)
        if completion is not None and completion.locked:
            return RecordResult(day=completion, changed=False)

        completion = self._touch_day(plan, day)
        stamp = as_utc(now, self.tz)
        pending = [r for r in completion.records if r.status == ExerciseStatus.PENDING]
        completion.records = [
            r.model_copy(update={"status": ExerciseStatus.COMPLETED, "completed_at": stamp})
            if r.status == ExerciseStatus.PENDING
            else r
            for r in completion.records
        ]
        newly_locked = self._lock_if_complete(completion, stamp)
        return RecordResult(day=completion, changed=bool(pending), newly_locked=newly_locked)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_day(self, plan: RehabilitationPlan, day: date, now: datetime) -> None:
        if day < plan.start_date:
            raise ValidationError(
                f"{day} is before the plan start date {plan.start_date}", field="date"
            )
        if day > plan.last_day:
            raise ValidationError(
                f"{day} is after the last day of the plan ({plan.last_day})", field="date"
            )
        today = local_date(now, self.tz)
        if day > today:
            raise ValidationError(f"{day} is in the future (today is {today})", field="date")

    def _touch_day(self, plan: RehabilitationPlan, day: date) -> DailyCompletion:
        """Return the day's completion, seeding pending records on first touch."""
        completion = plan.completion_for(day)
        if completion is None:
            completion = DailyCompletion(
                day=day,
                records=[ExerciseCompletionRecord(exercise_id=e.id) for e in plan.exercises],
            )
            plan.daily_completions = sorted(plan.daily_completions + [completion], key=lambda d: d.day)
        else:
            align_records(completion, plan.exercises)
        return completion

    @staticmethod
    def _lock_if_complete(completion: DailyCompletion, stamp: datetime) -> bool:
        if completion.locked or not completion.all_completed:
            return False
        completion.locked = True
        completion.locked_at = stamp
        return True


def _parse_outcome(outcome) -> ExerciseStatus:
    try:
        status = ExerciseStatus(outcome)
    except ValueError as exc:
        raise ValidationError(f"Unknown outcome: {outcome!r}", field="outcome") from exc
    if status == ExerciseStatus.PENDING:
        raise ValidationError("Outcome must be 'completed' or 'skipped'", field="outcome")
    return status


def _parse_skip_reason(reason) -> Optional[SkipReason]:
    if reason is None:
        return None
    try:
        return SkipReason(reason)
    except ValueError as exc:
        raise ValidationError(f"Unknown skip reason: {reason!r}", field="skip_reason") from exc


def _check_pain(pain_level: Optional[int]) -> None:
    if pain_level is None:
        return
    if isinstance(pain_level, bool) or not 0 <= pain_level <= 10:
        raise ValidationError(f"pain_level must be between 0 and 10, got {pain_level}", field="pain_level")


def _is_resubmission(
    stored: ExerciseCompletionRecord,
    status: ExerciseStatus,
    pain_level: Optional[int],
    notes: Optional[str],
    duration_minutes: Optional[int],
) -> bool:
    """An unchanged completion submitted again to a locked day."""
    return (
        stored.status == status
        and (pain_level is None or pain_level == stored.pain_level)
        and (notes is None or notes == stored.pain_notes)
        and (duration_minutes is None or duration_minutes == stored.duration_minutes)
    )
