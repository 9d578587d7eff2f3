"""Plan service: the entry point for every plan, completion and alert operation.

Each mutating operation runs under the plan's lock with its own session,
from load through recompute to commit. Notifications and case-status
synchronisation happen after the commit, so a collaborator failure never
rolls back plan state.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rehab_progress.analytics.timeseries import SeriesResult, bucket
from rehab_progress.config import Settings, get_settings
from rehab_progress.core.repository import (
    AlertRepository,
    AuditRepository,
    CheckInRepository,
    PlanRepository,
)
from rehab_progress.integrations.case_store import CaseStore, build_case_store
from rehab_progress.integrations.notifications import NotificationSink, build_notification_sink
from rehab_progress.observability.events import EventType
from rehab_progress.observability.logger import EngineEventLogger, get_event_logger
from rehab_progress.plans.aggregator import ProgressAggregator
from rehab_progress.plans.alerts import AlertGenerator
from rehab_progress.plans.calendar import local_date, resolve_timezone
from rehab_progress.plans.case_sync import CaseStatusSynchronizer, SyncOutcome
from rehab_progress.plans.errors import (
    AlertNotFound,
    CollaboratorError,
    DuplicatePlanConflict,
    PlanNotFound,
    ValidationError,
)
from rehab_progress.plans.locks import PlanLockRegistry
from rehab_progress.plans.models import (
    Alert,
    AlertType,
    CheckIn,
    ComplianceScore,
    ExerciseSpec,
    ExerciseStatus,
    PlanEdit,
    PlanSettings,
    PlanSpec,
    PlanStatus,
    PlanSummary,
    ProgressStats,
    ProgressView,
    RehabilitationPlan,
    SkipReason,
)
from rehab_progress.plans.recorder import CompletionRecorder, RecordResult
from rehab_progress.plans.state_machine import PlanStateMachine

logger = logging.getLogger(__name__)

ALERT_TITLES = {
    AlertType.SKIPPED_SESSIONS: "Missed Rehabilitation Sessions",
    AlertType.PROGRESS_MILESTONE: "Rehabilitation Milestone Reached",
    AlertType.HIGH_PAIN: "High Pain Reported",
    AlertType.INCREASING_PAIN_TREND: "Pain Trend Increasing",
}


@dataclass
class PlanCompletion:
    """A completed plan plus the pending case-status reconciliation."""

    plan: RehabilitationPlan
    case_status: Optional[str]
    reconciliation: "asyncio.Task[SyncOutcome]"


class PlanService:
    """Orchestrates plan lifecycle, recording, statistics and alerts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        case_store: Optional[CaseStore] = None,
        notifications: Optional[NotificationSink] = None,
        events: Optional[EngineEventLogger] = None,
        locks: Optional[PlanLockRegistry] = None,
        sleep=asyncio.sleep,
    ) -> None:
        settings = settings or get_settings()
        self.settings = settings
        self._session_factory = session_factory
        self.tz = resolve_timezone(settings.local_timezone)

        self.state_machine = PlanStateMachine(self.tz)
        self.recorder = CompletionRecorder(self.tz)
        self.aggregator = ProgressAggregator(settings.compliance_threshold, self.tz)
        self.alert_generator = AlertGenerator(
            max_consecutive_skips=settings.max_consecutive_skips,
            progress_milestone_days=settings.progress_milestone_days,
            high_pain_threshold=settings.high_pain_threshold,
        )

        self.case_store = case_store or build_case_store(settings)
        self.notifications = notifications or build_notification_sink(settings)
        self.events = events or get_event_logger()
        self.locks = locks or PlanLockRegistry()
        self.synchronizer = CaseStatusSynchronizer(
            self.case_store,
            self.notifications,
            events=self.events,
            verify_delay_ms=settings.case_sync_verify_delay_ms,
            sleep=sleep,
        )

    @asynccontextmanager
    async def _session(self):
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Round-trip to the database."""
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.synchronizer.drain()
        await self.case_store.close()
        await self.notifications.close()

    # ------------------------------------------------------------------
    # Plan lifecycle
    # ------------------------------------------------------------------

    async def create_plan(
        self,
        case_id: str,
        worker_id: str,
        clinician_id: str,
        duration_days: Union[int, float],
        exercises: list[Union[ExerciseSpec, dict[str, Any]]],
        now: datetime,
        name: str = "Recovery Plan",
        description: str = "Daily recovery exercises and activities",
        start_date: Optional[date] = None,
        settings: Optional[Union[PlanSettings, dict[str, Any]]] = None,
    ) -> RehabilitationPlan:
        """Create an active plan for a case that holds no plan yet."""
        spec = _build(
            PlanSpec,
            case_id=case_id,
            worker_id=worker_id,
            clinician_id=clinician_id,
            name=name,
            description=description,
            duration_days=duration_days,
            exercises=exercises,
            start_date=start_date,
            settings=settings or PlanSettings(),
        )
        plan = self.state_machine.create(spec, now)

        async with self.locks.case(case_id):
            with self.events.operation("create_plan", plan.id):
                async with self._session() as session:
                    repo = PlanRepository(session)
                    existing = await repo.get_by_case(case_id)
                    if existing is not None:
                        raise DuplicatePlanConflict(
                            f"Case {case_id} already holds plan {existing.id} ({existing.status.value})",
                            case_id=case_id,
                            plan_id=existing.id,
                        )
                    await repo.create(plan)
                    await AuditRepository(session).log_action(
                        "create",
                        "rehab_plan",
                        plan.id,
                        user_id=clinician_id,
                        details={"case_id": case_id, "duration_days": plan.duration_days},
                    )

        logger.info("Created plan %s for case %s", plan.id, case_id)
        self.events.log_plan_event(EventType.PLAN_CREATED, plan.id, case_id=case_id, status=plan.status.value)
        await self._notify(
            worker_id,
            "rehab_plan_assigned",
            "New Rehabilitation Plan",
            f"A new rehabilitation plan '{plan.name}' has been assigned to you",
            {"plan_id": plan.id, "case_id": case_id},
        )
        return plan

    async def get_plan(self, plan_id: str) -> RehabilitationPlan:
        async with self._session() as session:
            return await self._load(PlanRepository(session), plan_id)

    async def edit_plan(
        self,
        plan_id: str,
        duration_days: Union[int, float],
        exercises: list[Union[ExerciseSpec, dict[str, Any]]],
        now: datetime,
        name: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[Union[PlanSettings, dict[str, Any]]] = None,
    ) -> RehabilitationPlan:
        """Replace name, duration and exercises of an active plan. Locked days stay as they are."""
        edit = _build(
            PlanEdit,
            name=name,
            description=description,
            duration_days=duration_days,
            exercises=exercises,
            settings=settings,
        )
        async with self.locks.plan(plan_id):
            with self.events.operation("edit_plan", plan_id):
                async with self._session() as session:
                    repo = PlanRepository(session)
                    plan = await self._load(repo, plan_id)
                    previous = plan.progress_stats
                    locked_days = self.state_machine.edit(plan, edit, now)
                    stats, new_alerts = await self._persist(session, plan, previous)
                    await AuditRepository(session).log_action(
                        "edit",
                        "rehab_plan",
                        plan.id,
                        user_id=plan.clinician_id,
                        details={
                            "duration_days": plan.duration_days,
                            "exercise_ids": plan.exercise_ids,
                        },
                    )
            self.events.log_plan_event(EventType.PLAN_EDITED, plan.id, status=plan.status.value)
            await self._after_write(plan, locked_days, stats, new_alerts, now)
        return plan

    async def complete_plan(self, plan_id: str, now: datetime) -> PlanCompletion:
        """Complete an active plan and start case-status synchronisation."""
        async with self.locks.plan(plan_id):
            return await self._complete_locked(plan_id, now)

    async def cancel_plan(self, plan_id: str) -> None:
        """Delete an active plan with its completions and alerts, freeing the case."""
        async with self.locks.plan(plan_id):
            with self.events.operation("cancel_plan", plan_id):
                async with self._session() as session:
                    repo = PlanRepository(session)
                    plan = await self._load(repo, plan_id)
                    self.state_machine.ensure_cancellable(plan)
                    await AlertRepository(session).delete_for_plan(plan_id)
                    await repo.delete(plan_id)
                    await AuditRepository(session).log_action(
                        "cancel",
                        "rehab_plan",
                        plan_id,
                        user_id=plan.clinician_id,
                        details={"case_id": plan.case_id},
                    )
        logger.info("Cancelled plan %s; case %s is free", plan_id, plan.case_id)
        self.events.log_plan_event(EventType.PLAN_CANCELLED, plan_id, case_id=plan.case_id)

    # ------------------------------------------------------------------
    # Daily completions
    # ------------------------------------------------------------------

    async def record_completion(
        self,
        plan_id: str,
        day: date,
        exercise_id: str,
        outcome: Union[ExerciseStatus, str],
        now: datetime,
        pain_level: Optional[int] = None,
        notes: Optional[str] = None,
        skip_reason: Optional[Union[SkipReason, str]] = None,
        duration_minutes: Optional[int] = None,
    ) -> ProgressStats:
        """Record one exercise outcome and return the freshly recomputed stats."""
        async with self.locks.plan(plan_id):
            with self.events.operation("record_completion", plan_id) as op:
                async with self._session() as session:
                    plan = await self._load(PlanRepository(session), plan_id)
                    previous = plan.progress_stats
                    result = self.recorder.record(
                        plan,
                        day,
                        exercise_id,
                        outcome,
                        now=now,
                        pain_level=pain_level,
                        notes=notes,
                        skip_reason=skip_reason,
                        duration_minutes=duration_minutes,
                    )
                    stats, new_alerts = await self._persist_result(session, plan, previous, result)
                op.metadata["completed_days"] = stats.completed_days
            await self._after_write(plan, _locked(result, day), stats, new_alerts, now)
        return stats

    async def complete_day(self, plan_id: str, day: date, now: datetime) -> ProgressStats:
        """Mark every pending exercise of ``day`` completed."""
        async with self.locks.plan(plan_id):
            with self.events.operation("complete_day", plan_id):
                async with self._session() as session:
                    plan = await self._load(PlanRepository(session), plan_id)
                    previous = plan.progress_stats
                    result = self.recorder.complete_day(plan, day, now=now)
                    stats, new_alerts = await self._persist_result(session, plan, previous, result)
            await self._after_write(plan, _locked(result, day), stats, new_alerts, now)
        return stats

    # ------------------------------------------------------------------
    # Statistics and views
    # ------------------------------------------------------------------

    async def recompute(self, plan_id: str) -> ProgressStats:
        """Rebuild the stats cache from raw completions."""
        async with self.locks.plan(plan_id):
            with self.events.operation("recompute", plan_id):
                async with self._session() as session:
                    plan = await self._load(PlanRepository(session), plan_id)
                    previous = plan.progress_stats
                    stats, new_alerts = await self._persist(session, plan, previous)
            await self._deliver_alerts(new_alerts)
        return stats

    async def get_progress(self, plan_id: str, now: datetime) -> ProgressView:
        async with self._session() as session:
            plan = await self._load(PlanRepository(session), plan_id)
            alerts = await AlertRepository(session).list(plan_id=plan_id, unread_only=True)
        return self.aggregator.build_progress_view(plan, alerts, local_date(now, self.tz))

    async def plan_summary(
        self,
        clinician_id: Optional[str] = None,
        worker_id: Optional[str] = None,
    ) -> PlanSummary:
        async with self._session() as session:
            plans = await PlanRepository(session).list(clinician_id=clinician_id, worker_id=worker_id)
        return self.aggregator.plan_summary(plans)

    def get_series(
        self,
        records: Iterable[Any],
        start: date,
        end: date,
        tz=None,
    ) -> SeriesResult:
        return bucket(records, start, end, tz or self.tz)

    # ------------------------------------------------------------------
    # Check-ins and compliance
    # ------------------------------------------------------------------

    async def record_check_in(
        self,
        worker_id: str,
        checked_in_at: datetime,
        exercise_completed: bool,
        medication_taken: Optional[bool] = None,
        pain_level: Optional[int] = None,
        notes: Optional[str] = None,
        case_id: Optional[str] = None,
    ) -> CheckIn:
        check_in = _build(
            CheckIn,
            worker_id=worker_id,
            case_id=case_id,
            checked_in_at=checked_in_at,
            exercise_completed=exercise_completed,
            medication_taken=medication_taken,
            pain_level=pain_level,
            notes=notes,
        )
        async with self._session() as session:
            await CheckInRepository(session).add(check_in)
        return check_in

    async def compliance_score(self, worker_id: str, start: date, end: date) -> ComplianceScore:
        if end < start:
            raise ValidationError(f"Window end {end} is before start {start}", field="end")
        async with self._session() as session:
            check_ins = await CheckInRepository(session).list_for_worker(worker_id)
        return self.aggregator.compliance_score(worker_id, check_ins, start, end)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def list_alerts(
        self,
        recipient_id: Optional[str] = None,
        unread_only: bool = False,
        plan_id: Optional[str] = None,
    ) -> list[Alert]:
        async with self._session() as session:
            return await AlertRepository(session).list(
                recipient_id=recipient_id, plan_id=plan_id, unread_only=unread_only
            )

    async def mark_alert_read(self, alert_id: str) -> Alert:
        async with self._session() as session:
            alert = await AlertRepository(session).mark_read(alert_id)
        if alert is None:
            raise AlertNotFound(f"Alert {alert_id} not found", alert_id=alert_id)
        return alert

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, repo: PlanRepository, plan_id: str) -> RehabilitationPlan:
        plan = await repo.get(plan_id)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_id} not found", plan_id=plan_id)
        return plan

    async def _persist(
        self,
        session: AsyncSession,
        plan: RehabilitationPlan,
        previous: Optional[ProgressStats],
    ) -> tuple[ProgressStats, list[Alert]]:
        """Recompute, save the plan and store alerts not raised before."""
        stats = self.aggregator.recompute(plan)
        plan.progress_stats = stats
        await PlanRepository(session).save(plan)
        new_alerts = await self._store_alerts(session, plan, previous, stats)
        return stats, new_alerts

    async def _persist_result(
        self,
        session: AsyncSession,
        plan: RehabilitationPlan,
        previous: Optional[ProgressStats],
        result: RecordResult,
    ) -> tuple[ProgressStats, list[Alert]]:
        if result.changed or previous != self.aggregator.recompute(plan):
            return await self._persist(session, plan, previous)
        return previous, []

    async def _store_alerts(
        self,
        session: AsyncSession,
        plan: RehabilitationPlan,
        previous: Optional[ProgressStats],
        current: ProgressStats,
    ) -> list[Alert]:
        repo = AlertRepository(session)
        seen = await repo.trigger_keys(plan.id)
        stored = []
        for alert in self.alert_generator.evaluate(plan, previous, current):
            key = (alert.type.value, alert.trigger_key)
            if key in seen:
                continue
            seen.add(key)
            await repo.add(alert)
            stored.append(alert)
        return stored

    async def _after_write(
        self,
        plan: RehabilitationPlan,
        locked_days: list[date],
        stats: ProgressStats,
        new_alerts: list[Alert],
        now: datetime,
    ) -> None:
        """Post-commit work; runs while the plan lock is still held."""
        for day in locked_days:
            self.events.log_day_locked(plan.id, day.isoformat())
        self.events.log_recompute(plan.id, stats.completed_days, stats.progress_percentage)
        await self._deliver_alerts(new_alerts)

        if (
            self.settings.auto_complete_plans
            and plan.status == PlanStatus.ACTIVE
            and stats.completed_days >= stats.total_days
        ):
            logger.info("Plan %s reached 100%%; completing automatically", plan.id)
            completion = await self._complete_locked(plan.id, now)
            plan.status = completion.plan.status
            plan.end_date = completion.plan.end_date

    async def _complete_locked(self, plan_id: str, now: datetime) -> PlanCompletion:
        with self.events.operation("complete_plan", plan_id):
            async with self._session() as session:
                repo = PlanRepository(session)
                plan = await self._load(repo, plan_id)
                self.state_machine.complete(plan, now)
                plan.progress_stats = self.aggregator.recompute(plan)
                await repo.save(plan)
                await AuditRepository(session).log_action(
                    "complete",
                    "rehab_plan",
                    plan.id,
                    user_id=plan.clinician_id,
                    details={"case_id": plan.case_id, "end_date": plan.end_date.isoformat()},
                )

        logger.info("Completed plan %s", plan.id)
        self.events.log_plan_event(EventType.PLAN_COMPLETED, plan.id, case_id=plan.case_id, status=plan.status.value)
        case_status, reconciliation = await self.synchronizer.dispatch(
            plan.case_id, clinician_id=plan.clinician_id, plan_id=plan.id
        )
        await self._notify(
            plan.worker_id,
            "rehab_plan_completed",
            "Rehabilitation Plan Completed",
            f"Your rehabilitation plan '{plan.name}' is complete",
            {"plan_id": plan.id, "case_id": plan.case_id},
        )
        return PlanCompletion(plan=plan, case_status=case_status, reconciliation=reconciliation)

    async def _deliver_alerts(self, alerts: list[Alert]) -> None:
        for alert in alerts:
            self.events.log_alert(alert.plan_id, alert.type.value, alert.recipient_id, alert.trigger_key)
            await self._notify(
                alert.recipient_id,
                alert.type.value,
                ALERT_TITLES[alert.type],
                alert.message,
                {"plan_id": alert.plan_id, "alert_id": alert.id, **alert.metadata},
            )

    async def _notify(
        self,
        recipient_id: str,
        notification_type: str,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            await self.notifications.send(recipient_id, notification_type, title, message, metadata)
        except CollaboratorError as e:
            logger.error("Notification %s to %s failed: %s", notification_type, recipient_id, e)
            self.events.log_notification_failure(recipient_id, notification_type, str(e))


def _build(model_cls, **data):
    """Instantiate a pydantic model, reporting bad input as ``ValidationError``."""
    try:
        return model_cls(**data)
    except PydanticValidationError as e:
        errors = [{"loc": [str(p) for p in err["loc"]], "msg": err["msg"]} for err in e.errors()]
        raise ValidationError(f"Invalid {model_cls.__name__}: {errors[0]['msg']}", errors=errors) from e


def _locked(result: RecordResult, day: date) -> list[date]:
    return [day] if result.newly_locked else []
