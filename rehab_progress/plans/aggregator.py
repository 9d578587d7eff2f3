"""Progress statistics, pain statistics and compliance scoring.

Every figure here is rebuilt from raw daily completions or check-ins. The
``progress_stats`` stored on a plan is a cache and is only ever compared
against a fresh ``recompute``.
"""

import logging
from datetime import date, timedelta
from typing import Iterable, Optional

from rehab_progress.plans.calendar import local_date, percentage, resolve_timezone, round_half_up
from rehab_progress.plans.models import (
    Alert,
    CheckIn,
    ComplianceScore,
    DailyCompletion,
    DaySummary,
    DayStatus,
    ExerciseCompletionRecord,
    ExerciseDayStatus,
    ExerciseProgress,
    ExerciseStatus,
    PainReport,
    PainStats,
    PainTrend,
    PlanStatus,
    PlanSummary,
    ProgressStats,
    ProgressView,
    RehabilitationPlan,
    TodayExercise,
    TodayView,
)

logger = logging.getLogger(__name__)

PAIN_HISTORY_DAYS = 30
PAIN_TREND_WINDOW = 7
PAIN_TREND_MIN_REPORTS = 3
PAIN_TREND_TOLERANCE = 0.5
RECENT_DAYS = 7


class ProgressAggregator:
    """Derives statistics and read views from plan records."""

    def __init__(self, compliance_threshold: int = 80, tz=None) -> None:
        self.compliance_threshold = compliance_threshold
        self.tz = resolve_timezone(tz)

    # ------------------------------------------------------------------
    # Progress statistics
    # ------------------------------------------------------------------

    def recompute(self, plan: RehabilitationPlan) -> ProgressStats:
        """Rebuild ``ProgressStats`` from the plan's daily completions."""
        days = sorted(plan.daily_completions, key=lambda d: d.day)

        completed = [d for d in days if d.overall_status == DayStatus.COMPLETED]
        skipped = [d for d in days if d.count(ExerciseStatus.SKIPPED) > 0]
        streak_completed, streak_skipped = _streaks(days)

        return ProgressStats(
            total_days=plan.duration_days,
            completed_days=len(completed),
            skipped_days=len(skipped),
            consecutive_completed_days=streak_completed,
            consecutive_skipped_days=streak_skipped,
            progress_percentage=percentage(len(completed), plan.duration_days),
            last_completed_date=completed[-1].day if completed else None,
            last_skipped_date=skipped[-1].day if skipped else None,
            pain=self.pain_stats(days),
        )

    def pain_stats(self, days: list[DailyCompletion]) -> PainStats:
        """Per-day average pain on completed records, with a trend over the last week."""
        reports: list[PainReport] = []
        all_levels: list[int] = []
        for day in days:
            levels = [
                r.pain_level
                for r in day.records
                if r.status == ExerciseStatus.COMPLETED and r.pain_level is not None
            ]
            if not levels:
                continue
            all_levels.extend(levels)
            reports.append(
                PainReport(
                    day=day.day,
                    average_pain_level=round_half_up(sum(levels) / len(levels), 1),
                    exercise_count=len(levels),
                )
            )

        if not reports:
            return PainStats()

        last = reports[-1]
        return PainStats(
            average_pain_level=round_half_up(sum(all_levels) / len(all_levels), 1),
            last_reported_pain_level=last.average_pain_level,
            last_reported_pain_date=last.day,
            pain_trend=pain_trend([r.average_pain_level for r in reports]),
            history=reports[-PAIN_HISTORY_DAYS:],
        )

    # ------------------------------------------------------------------
    # Compliance
    # ------------------------------------------------------------------

    def compliance_score(
        self,
        worker_id: str,
        check_ins: Iterable[CheckIn],
        window_start: date,
        window_end: date,
    ) -> ComplianceScore:
        """Share of compliant check-ins dated within the inclusive window."""
        in_window = [
            c
            for c in check_ins
            if c.worker_id == worker_id
            and window_start <= local_date(c.checked_in_at, self.tz) <= window_end
        ]
        compliant = sum(1 for c in in_window if c.is_compliant)
        score = percentage(compliant, len(in_window))
        return ComplianceScore(
            worker_id=worker_id,
            window_start=window_start,
            window_end=window_end,
            total_check_ins=len(in_window),
            compliant_check_ins=compliant,
            score=score,
            is_compliant=bool(in_window) and score >= self.compliance_threshold,
        )

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def build_progress_view(
        self,
        plan: RehabilitationPlan,
        alerts: Iterable[Alert],
        today: date,
    ) -> ProgressView:
        fresh = self.recompute(plan)
        consistent = plan.progress_stats == fresh
        if not consistent:
            logger.warning(
                "Cached stats for plan %s differ from a fresh recompute; serving the recompute",
                plan.id,
            )

        return ProgressView(
            plan=plan,
            today=self._today_view(plan, today),
            progress_stats=fresh,
            last_7_days=self._recent_days(plan, today),
            exercise_progress=self._exercise_progress(plan),
            alerts=[a for a in alerts if a.plan_id == plan.id and not a.is_read],
            stats_cache_consistent=consistent,
        )

    def plan_summary(self, plans: Iterable[RehabilitationPlan]) -> PlanSummary:
        """Active/completed counts and the mean progress across ``plans``."""
        plans = list(plans)
        if not plans:
            return PlanSummary()
        progress = [self.recompute(p).progress_percentage for p in plans]
        return PlanSummary(
            active_plans=sum(1 for p in plans if p.status == PlanStatus.ACTIVE),
            completed_plans=sum(1 for p in plans if p.status == PlanStatus.COMPLETED),
            average_progress=round_half_up(sum(progress) / len(progress)),
        )

    def _today_view(self, plan: RehabilitationPlan, today: date) -> TodayView:
        completion = plan.completion_for(today)
        exercises = []
        for exercise in plan.exercises:
            record: Optional[ExerciseCompletionRecord] = None
            if completion is not None:
                record = completion.record_for(exercise.id)
            exercises.append(
                TodayExercise(
                    exercise=exercise,
                    record=record or ExerciseCompletionRecord(exercise_id=exercise.id),
                )
            )
        return TodayView(
            day=today,
            exercises=exercises,
            overall_status=completion.overall_status if completion else DayStatus.NOT_STARTED,
            locked=completion.locked if completion else False,
        )

    def _recent_days(self, plan: RehabilitationPlan, today: date) -> list[DaySummary]:
        summaries = []
        for offset in range(RECENT_DAYS - 1, -1, -1):
            day = today - timedelta(days=offset)
            if day < plan.start_date or day > plan.last_day:
                continue
            completion = plan.completion_for(day)
            if completion is None:
                summaries.append(
                    DaySummary(
                        day=day,
                        completed_exercises=0,
                        skipped_exercises=0,
                        total_exercises=len(plan.exercises),
                        overall_status=DayStatus.NOT_STARTED,
                    )
                )
                continue
            summaries.append(
                DaySummary(
                    day=day,
                    completed_exercises=completion.count(ExerciseStatus.COMPLETED),
                    skipped_exercises=completion.count(ExerciseStatus.SKIPPED),
                    total_exercises=len(completion.records),
                    overall_status=completion.overall_status,
                    locked=completion.locked,
                )
            )
        return summaries

    def _exercise_progress(self, plan: RehabilitationPlan) -> list[ExerciseProgress]:
        days = sorted(plan.daily_completions, key=lambda d: d.day)
        result = []
        for exercise in plan.exercises:
            history = []
            for day in days:
                record = day.record_for(exercise.id)
                if record is None or record.status == ExerciseStatus.PENDING:
                    continue
                history.append(
                    ExerciseDayStatus(
                        day=day.day,
                        status=record.status,
                        skip_reason=record.skip_reason,
                        pain_level=record.pain_level,
                    )
                )
            completed = sum(1 for h in history if h.status == ExerciseStatus.COMPLETED)
            skipped = sum(1 for h in history if h.status == ExerciseStatus.SKIPPED)
            result.append(
                ExerciseProgress(
                    exercise_id=exercise.id,
                    name=exercise.name,
                    category=exercise.category,
                    difficulty=exercise.difficulty,
                    recorded_days=len(history),
                    completed_count=completed,
                    skipped_count=skipped,
                    completion_rate=percentage(completed, len(history)),
                    recent=history[-RECENT_DAYS:],
                )
            )
        return result


def _streaks(days: list[DailyCompletion]) -> tuple[int, int]:
    """Consecutive completed and skipped days ending at the latest recorded day.

    A calendar gap or a day of any other overall status ends the walk.
    """
    recorded = [d for d in days if d.overall_status != DayStatus.NOT_STARTED]
    if not recorded:
        return 0, 0

    latest = recorded[-1]
    status = latest.overall_status
    if status not in (DayStatus.COMPLETED, DayStatus.SKIPPED):
        return 0, 0

    count = 0
    expected = latest.day
    for day in reversed(recorded):
        if day.day != expected or day.overall_status != status:
            break
        count += 1
        expected = day.day - timedelta(days=1)

    if status == DayStatus.COMPLETED:
        return count, 0
    return 0, count


def pain_trend(levels: list[float]) -> PainTrend:
    """Classify the direction of the last week of daily pain averages."""
    if len(levels) < PAIN_TREND_MIN_REPORTS:
        return PainTrend.UNKNOWN

    window = levels[-PAIN_TREND_WINDOW:]
    increases = decreases = stable = 0
    for previous, current in zip(window, window[1:]):
        diff = current - previous
        if diff > PAIN_TREND_TOLERANCE:
            increases += 1
        elif diff < -PAIN_TREND_TOLERANCE:
            decreases += 1
        else:
            stable += 1

    steps = len(window) - 1
    if increases * 2 > steps:
        return PainTrend.INCREASING
    if decreases * 2 > steps:
        return PainTrend.DECREASING
    if stable * 2 > steps:
        return PainTrend.STABLE
    return PainTrend.FLUCTUATING
