"""Tests for daily completion recording and the locked-day rule."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from rehab_progress.plans.aggregator import ProgressAggregator
from rehab_progress.plans.calendar import local_date
from rehab_progress.plans.errors import (
    DayLocked,
    InvalidStateTransition,
    UnknownExercise,
    ValidationError,
)
from rehab_progress.plans.models import (
    DayStatus,
    ExerciseSpec,
    ExerciseStatus,
    PlanStatus,
    RehabilitationPlan,
    SkipReason,
)
from rehab_progress.plans.recorder import CompletionRecorder

NOW = datetime(2026, 3, 9, 15, 0, tzinfo=timezone.utc)
START = date(2026, 3, 3)
DAY1 = START


def _plan(exercise_ids=("ex-a", "ex-b"), duration: int = 7, status=PlanStatus.ACTIVE) -> RehabilitationPlan:
    return RehabilitationPlan(
        case_id="case-1",
        worker_id="worker-1",
        clinician_id="clin-1",
        name="Knee rehab",
        exercises=[ExerciseSpec(id=i, name=i.upper()) for i in exercise_ids],
        duration_days=duration,
        start_date=START,
        status=status,
    )


@pytest.fixture
def recorder():
    return CompletionRecorder("UTC")


def _record(recorder, plan, exercise_id, outcome="completed", day=DAY1, **kwargs):
    return recorder.record(plan, day, exercise_id, outcome, now=NOW, **kwargs)


# ------------------------------------------------------------------ scenario

class TestSingleExerciseWeek:
    """A 7-day plan with one exercise, day 1 completed."""

    def test_progress_after_first_day(self, recorder):
        plan = _plan(exercise_ids=("ex-a",))
        result = _record(recorder, plan, "ex-a")
        stats = ProgressAggregator().recompute(plan)

        assert result.newly_locked
        assert stats.completed_days == 1
        assert stats.progress_percentage == 14
        assert stats.consecutive_completed_days == 1

    def test_resubmission_is_a_no_op(self, recorder):
        plan = _plan(exercise_ids=("ex-a",))
        _record(recorder, plan, "ex-a", pain_level=3)
        before = ProgressAggregator().recompute(plan)

        result = _record(recorder, plan, "ex-a")
        assert result.changed is False
        assert ProgressAggregator().recompute(plan) == before

        result = _record(recorder, plan, "ex-a", pain_level=3)
        assert result.changed is False

    def test_changing_a_locked_day_fails(self, recorder):
        plan = _plan(exercise_ids=("ex-a",))
        _record(recorder, plan, "ex-a")

        with pytest.raises(DayLocked):
            _record(recorder, plan, "ex-a", "skipped")
        with pytest.raises(DayLocked):
            _record(recorder, plan, "ex-a", pain_level=6)


# ----------------------------------------------------------------- recording

class TestRecord:
    def test_first_touch_seeds_pending_records(self, recorder):
        plan = _plan()
        result = _record(recorder, plan, "ex-a")

        day = plan.completion_for(DAY1)
        assert day is result.day
        assert [r.exercise_id for r in day.records] == ["ex-a", "ex-b"]
        assert day.record_for("ex-b").status == ExerciseStatus.PENDING
        assert day.overall_status == DayStatus.PARTIAL
        assert not day.locked
        assert not result.newly_locked

    def test_day_locks_when_every_exercise_completed(self, recorder):
        plan = _plan()
        _record(recorder, plan, "ex-a")
        result = _record(recorder, plan, "ex-b")

        assert result.newly_locked
        assert result.day.locked
        assert result.day.locked_at == NOW

    def test_last_write_wins_while_unlocked(self, recorder):
        plan = _plan()
        _record(recorder, plan, "ex-a", "skipped", skip_reason="pain", notes="knee sore")
        record = plan.completion_for(DAY1).record_for("ex-a")
        assert record.status == ExerciseStatus.SKIPPED
        assert record.skip_reason == SkipReason.PAIN
        assert record.skip_notes == "knee sore"

        _record(recorder, plan, "ex-a", "completed", pain_level=4, duration_minutes=15)
        record = plan.completion_for(DAY1).record_for("ex-a")
        assert record.status == ExerciseStatus.COMPLETED
        assert record.skip_reason is None
        assert record.pain_level == 4
        assert record.duration_minutes == 15

    def test_days_stay_sorted(self, recorder):
        plan = _plan()
        _record(recorder, plan, "ex-a", day=date(2026, 3, 5))
        _record(recorder, plan, "ex-a", day=date(2026, 3, 4))
        assert [d.day for d in plan.daily_completions] == [date(2026, 3, 4), date(2026, 3, 5)]

    def test_rejects_day_before_start(self, recorder):
        with pytest.raises(ValidationError):
            _record(recorder, _plan(), "ex-a", day=date(2026, 3, 2))

    def test_rejects_day_after_last_day(self, recorder):
        # 3-day plan ends on March 5th
        with pytest.raises(ValidationError):
            _record(recorder, _plan(duration=3), "ex-a", day=date(2026, 3, 6))

    def test_rejects_future_days(self, recorder):
        with pytest.raises(ValidationError):
            _record(recorder, _plan(duration=30), "ex-a", day=date(2026, 3, 10))

    def test_unknown_exercise(self, recorder):
        with pytest.raises(UnknownExercise):
            _record(recorder, _plan(), "ex-zzz")

    @pytest.mark.parametrize("outcome", ["pending", "done", ""])
    def test_rejects_bad_outcomes(self, recorder, outcome):
        with pytest.raises(ValidationError):
            _record(recorder, _plan(), "ex-a", outcome)

    @pytest.mark.parametrize("pain", [-1, 11])
    def test_rejects_pain_out_of_range(self, recorder, pain):
        with pytest.raises(ValidationError):
            _record(recorder, _plan(), "ex-a", pain_level=pain)

    def test_rejects_unknown_skip_reason(self, recorder):
        with pytest.raises(ValidationError):
            _record(recorder, _plan(), "ex-a", "skipped", skip_reason="bored")

    def test_rejects_recording_on_completed_plan(self, recorder):
        with pytest.raises(InvalidStateTransition):
            _record(recorder, _plan(status=PlanStatus.COMPLETED), "ex-a")

    def test_removed_exercise_records_are_dropped_on_touch(self, recorder):
        plan = _plan()
        _record(recorder, plan, "ex-b", "skipped")
        plan.exercises = [ExerciseSpec(id="ex-a", name="A")]

        _record(recorder, plan, "ex-a", "skipped")
        assert [r.exercise_id for r in plan.completion_for(DAY1).records] == ["ex-a"]

    def test_naive_now_is_local_wall_clock(self):
        recorder = CompletionRecorder("America/New_York")
        plan = _plan(exercise_ids=("ex-a",), duration=30)
        late_evening = datetime(2026, 3, 9, 23, 30)

        result = recorder.record(plan, date(2026, 3, 9), "ex-a", "completed", now=late_evening)

        stamp = result.day.records[0].completed_at
        assert stamp == datetime(2026, 3, 10, 3, 30, tzinfo=timezone.utc)
        assert result.day.locked_at == stamp
        assert local_date(stamp, ZoneInfo("America/New_York")) == date(2026, 3, 9)


# ---------------------------------------------------------------- whole day

class TestCompleteDay:
    def test_completes_pending_and_locks(self, recorder):
        plan = _plan()
        result = recorder.complete_day(plan, DAY1, now=NOW)

        assert result.changed
        assert result.newly_locked
        assert result.day.all_completed

    def test_keeps_skipped_records(self, recorder):
        plan = _plan()
        _record(recorder, plan, "ex-a", "skipped")
        result = recorder.complete_day(plan, DAY1, now=NOW)

        assert result.day.record_for("ex-a").status == ExerciseStatus.SKIPPED
        assert result.day.record_for("ex-b").status == ExerciseStatus.COMPLETED
        assert not result.day.locked

    def test_locked_day_is_unchanged(self, recorder):
        plan = _plan()
        recorder.complete_day(plan, DAY1, now=NOW)
        result = recorder.complete_day(plan, DAY1, now=NOW)
        assert result.changed is False
        assert result.newly_locked is False
