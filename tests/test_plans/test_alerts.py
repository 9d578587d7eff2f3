"""Tests for threshold-driven alert rules."""

from datetime import date

import pytest

from rehab_progress.plans.aggregator import ProgressAggregator
from rehab_progress.plans.alerts import AlertGenerator
from rehab_progress.plans.models import (
    AlertType,
    DailyCompletion,
    ExerciseCompletionRecord,
    ExerciseSpec,
    ExerciseStatus,
    PlanSettings,
    ProgressStats,
    RehabilitationPlan,
)

C = ExerciseStatus.COMPLETED
S = ExerciseStatus.SKIPPED


def _day(day_of_month: int, status: ExerciseStatus, pain=None) -> DailyCompletion:
    return DailyCompletion(
        day=date(2026, 3, day_of_month),
        records=[ExerciseCompletionRecord(exercise_id="ex-a", status=status, pain_level=pain)],
        locked=status == C,
    )


def _plan(*days: DailyCompletion, settings: PlanSettings = None) -> RehabilitationPlan:
    return RehabilitationPlan(
        id="plan-1",
        case_id="case-1",
        worker_id="worker-1",
        clinician_id="clin-1",
        name="Knee rehab",
        exercises=[ExerciseSpec(id="ex-a", name="A")],
        duration_days=30,
        start_date=date(2026, 3, 1),
        settings=settings or PlanSettings(),
        daily_completions=list(days),
    )


@pytest.fixture
def generator():
    return AlertGenerator(max_consecutive_skips=2, progress_milestone_days=5, high_pain_threshold=7)


def _evaluate(generator, plan, previous=None):
    current = ProgressAggregator().recompute(plan)
    return generator.evaluate(plan, previous, current)


def _of_type(alerts, alert_type):
    return [a for a in alerts if a.type == alert_type]


# ----------------------------------------------------------- skipped sessions

class TestSkippedSessions:
    def test_two_consecutive_skips_alert_the_clinician(self, generator):
        alerts = _of_type(_evaluate(generator, _plan(_day(1, S), _day(2, S))), AlertType.SKIPPED_SESSIONS)

        assert len(alerts) == 1
        assert alerts[0].recipient_id == "clin-1"
        assert alerts[0].trigger_key == "2026-03-02"
        assert alerts[0].metadata["consecutive_skipped_days"] == 2
        assert alerts[0].action_url == "/plans/plan-1/progress"

    def test_single_skip_is_quiet(self, generator):
        assert not _of_type(_evaluate(generator, _plan(_day(1, C), _day(2, S))), AlertType.SKIPPED_SESSIONS)

    def test_plan_settings_override_threshold(self, generator):
        plan = _plan(_day(1, S), _day(2, S), settings=PlanSettings(max_consecutive_skips=3))
        assert not _of_type(_evaluate(generator, plan), AlertType.SKIPPED_SESSIONS)


# ----------------------------------------------------------------- milestones

class TestMilestones:
    def test_crossing_a_multiple_alerts_the_worker(self, generator):
        plan = _plan(*[_day(d, C) for d in range(1, 6)])
        previous = ProgressStats(total_days=30, completed_days=4)
        alerts = _of_type(_evaluate(generator, plan, previous), AlertType.PROGRESS_MILESTONE)

        assert [a.trigger_key for a in alerts] == ["5"]
        assert alerts[0].recipient_id == "worker-1"
        assert "5 days" in alerts[0].message

    def test_jumping_several_multiples(self, generator):
        plan = _plan(*[_day(d, C) for d in range(1, 11)])
        alerts = _of_type(_evaluate(generator, plan, None), AlertType.PROGRESS_MILESTONE)
        assert [a.trigger_key for a in alerts] == ["5", "10"]

    def test_no_alert_without_progress(self, generator):
        plan = _plan(*[_day(d, C) for d in range(1, 6)])
        previous = ProgressStats(total_days=30, completed_days=5)
        assert not _of_type(_evaluate(generator, plan, previous), AlertType.PROGRESS_MILESTONE)

    def test_plan_step_override(self, generator):
        plan = _plan(*[_day(d, C) for d in range(1, 4)], settings=PlanSettings(progress_milestone_days=3))
        alerts = _of_type(_evaluate(generator, plan), AlertType.PROGRESS_MILESTONE)
        assert [a.trigger_key for a in alerts] == ["3"]


# ------------------------------------------------------------------ high pain

class TestHighPain:
    def test_high_pain_on_any_status(self, generator):
        plan = _plan(_day(1, C, pain=3), _day(2, S, pain=8), _day(3, C, pain=7))
        alerts = _of_type(_evaluate(generator, plan), AlertType.HIGH_PAIN)

        assert [a.trigger_key for a in alerts] == ["2026-03-02", "2026-03-03"]
        assert alerts[0].metadata["pain_level"] == 8
        assert alerts[0].recipient_id == "clin-1"

    def test_one_alert_per_day(self, generator):
        day = DailyCompletion(
            day=date(2026, 3, 1),
            records=[
                ExerciseCompletionRecord(exercise_id="ex-a", status=C, pain_level=8),
                ExerciseCompletionRecord(exercise_id="ex-b", status=C, pain_level=9),
            ],
        )
        alerts = _of_type(_evaluate(generator, _plan(day)), AlertType.HIGH_PAIN)
        assert len(alerts) == 1
        assert alerts[0].metadata["pain_level"] == 9
        assert alerts[0].metadata["exercise_ids"] == ["ex-a", "ex-b"]


# ----------------------------------------------------------------- pain trend

class TestPainTrend:
    def test_increasing_trend_alerts_the_clinician(self, generator):
        plan = _plan(_day(1, C, pain=2), _day(2, C, pain=4), _day(3, C, pain=6))
        alerts = _of_type(_evaluate(generator, plan), AlertType.INCREASING_PAIN_TREND)

        assert len(alerts) == 1
        assert alerts[0].trigger_key == "2026-03-03"
        assert alerts[0].recipient_id == "clin-1"

    def test_decreasing_trend_is_quiet(self, generator):
        plan = _plan(_day(1, C, pain=6), _day(2, C, pain=4), _day(3, C, pain=2))
        assert not _of_type(_evaluate(generator, plan), AlertType.INCREASING_PAIN_TREND)


def test_same_stats_propose_same_trigger_keys(generator):
    plan = _plan(_day(1, S, pain=9), _day(2, S))
    first = {(a.type, a.trigger_key) for a in _evaluate(generator, plan)}
    second = {(a.type, a.trigger_key) for a in _evaluate(generator, plan)}
    assert first == second
