"""Threshold-driven alerts raised after each recompute."""

from typing import Optional

from rehab_progress.plans.models import (
    Alert,
    AlertType,
    PainTrend,
    ProgressStats,
    RehabilitationPlan,
)


class AlertGenerator:
    """Compares previous and current stats and proposes alerts.

    Proposals carry a ``trigger_key``; the alert store suppresses any
    ``(plan_id, type, trigger_key)`` it already holds, so evaluating the same
    stats twice never produces a second alert.
    """

    def __init__(
        self,
        max_consecutive_skips: int = 2,
        progress_milestone_days: int = 5,
        high_pain_threshold: int = 7,
    ) -> None:
        self.max_consecutive_skips = max_consecutive_skips
        self.progress_milestone_days = progress_milestone_days
        self.high_pain_threshold = high_pain_threshold

    def evaluate(
        self,
        plan: RehabilitationPlan,
        previous: Optional[ProgressStats],
        current: ProgressStats,
    ) -> list[Alert]:
        alerts: list[Alert] = []
        alerts.extend(self._skipped_sessions(plan, current))
        alerts.extend(self._milestones(plan, previous, current))
        alerts.extend(self._high_pain(plan))
        alerts.extend(self._pain_trend(plan, current))
        return alerts

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _skipped_sessions(self, plan: RehabilitationPlan, current: ProgressStats) -> list[Alert]:
        threshold = plan.settings.max_consecutive_skips or self.max_consecutive_skips
        if current.consecutive_skipped_days < threshold or current.last_skipped_date is None:
            return []
        skipped = current.consecutive_skipped_days
        return [
            Alert(
                plan_id=plan.id,
                type=AlertType.SKIPPED_SESSIONS,
                message=f"Worker has skipped {skipped} consecutive days of rehabilitation exercises",
                recipient_id=plan.clinician_id,
                trigger_key=current.last_skipped_date.isoformat(),
                action_url=_progress_url(plan),
                metadata={
                    "case_id": plan.case_id,
                    "worker_id": plan.worker_id,
                    "consecutive_skipped_days": skipped,
                },
            )
        ]

    def _milestones(
        self,
        plan: RehabilitationPlan,
        previous: Optional[ProgressStats],
        current: ProgressStats,
    ) -> list[Alert]:
        step = plan.settings.progress_milestone_days or self.progress_milestone_days
        before = previous.completed_days if previous else 0
        alerts = []
        for milestone in range(step, current.completed_days + 1, step):
            if milestone <= before:
                continue
            alerts.append(
                Alert(
                    plan_id=plan.id,
                    type=AlertType.PROGRESS_MILESTONE,
                    message=f"Congratulations! You've completed {milestone} days of your rehabilitation plan!",
                    recipient_id=plan.worker_id,
                    trigger_key=str(milestone),
                    action_url=_progress_url(plan),
                    metadata={
                        "case_id": plan.case_id,
                        "completed_days": milestone,
                        "total_days": current.total_days,
                    },
                )
            )
        return alerts

    def _high_pain(self, plan: RehabilitationPlan) -> list[Alert]:
        alerts = []
        for day in plan.daily_completions:
            levels = [r.pain_level for r in day.records if r.pain_level is not None]
            if not levels or max(levels) < self.high_pain_threshold:
                continue
            worst = max(levels)
            alerts.append(
                Alert(
                    plan_id=plan.id,
                    type=AlertType.HIGH_PAIN,
                    message=f"High pain level ({worst}/10) reported on {day.day.isoformat()}",
                    recipient_id=plan.clinician_id,
                    trigger_key=day.day.isoformat(),
                    action_url=_progress_url(plan),
                    metadata={
                        "case_id": plan.case_id,
                        "worker_id": plan.worker_id,
                        "pain_level": worst,
                        "exercise_ids": [
                            r.exercise_id
                            for r in day.records
                            if r.pain_level is not None and r.pain_level >= self.high_pain_threshold
                        ],
                    },
                )
            )
        return alerts

    def _pain_trend(self, plan: RehabilitationPlan, current: ProgressStats) -> list[Alert]:
        pain = current.pain
        if pain.pain_trend != PainTrend.INCREASING or pain.last_reported_pain_date is None:
            return []
        return [
            Alert(
                plan_id=plan.id,
                type=AlertType.INCREASING_PAIN_TREND,
                message=(
                    "Pain levels are trending upward "
                    f"(latest average {pain.last_reported_pain_level}/10)"
                ),
                recipient_id=plan.clinician_id,
                trigger_key=pain.last_reported_pain_date.isoformat(),
                action_url=_progress_url(plan),
                metadata={
                    "case_id": plan.case_id,
                    "worker_id": plan.worker_id,
                    "average_pain_level": pain.average_pain_level,
                },
            )
        ]


def _progress_url(plan: RehabilitationPlan) -> str:
    return f"/plans/{plan.id}/progress"
