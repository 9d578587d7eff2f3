"""Repositories mapping plan, alert and check-in models to their tables."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rehab_progress.core.models import (
    AlertRow,
    AuditLog,
    CheckInRow,
    DailyCompletionRow,
    ExerciseCompletionRow,
    PlanRow,
)
from rehab_progress.plans.errors import ConcurrentModification, DuplicatePlanConflict
from rehab_progress.plans.models import (
    Alert,
    CheckIn,
    DailyCompletion,
    ExerciseCompletionRecord,
    RehabilitationPlan,
)


class PlanRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, plan: RehabilitationPlan) -> RehabilitationPlan:
        row = PlanRow(id=plan.id, case_id=plan.case_id, daily_completions=[])
        _copy_plan(row, plan)
        row.created_at = plan.created_at
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicatePlanConflict(
                f"Case {plan.case_id} already holds a plan", case_id=plan.case_id
            ) from e
        plan.version = row.version
        return plan

    async def get_row(self, plan_id: str) -> Optional[PlanRow]:
        return await self.session.get(PlanRow, plan_id)

    async def get(self, plan_id: str) -> Optional[RehabilitationPlan]:
        row = await self.get_row(plan_id)
        return plan_from_row(row) if row else None

    async def get_by_case(self, case_id: str) -> Optional[RehabilitationPlan]:
        result = await self.session.execute(select(PlanRow).where(PlanRow.case_id == case_id))
        row = result.scalar_one_or_none()
        return plan_from_row(row) if row else None

    async def list(
        self,
        clinician_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[RehabilitationPlan]:
        stmt = select(PlanRow)
        if clinician_id:
            stmt = stmt.where(PlanRow.clinician_id == clinician_id)
        if worker_id:
            stmt = stmt.where(PlanRow.worker_id == worker_id)
        if status:
            stmt = stmt.where(PlanRow.status == status)
        stmt = stmt.order_by(PlanRow.created_at.desc())
        result = await self.session.execute(stmt)
        return [plan_from_row(row) for row in result.scalars().all()]

    async def save(self, plan: RehabilitationPlan) -> RehabilitationPlan:
        """Write the plan back onto its row.

        ``plan.version`` must still match the stored row; a write committed by
        another session since the plan was loaded raises ``ConcurrentModification``.
        """
        row = await self.get_row(plan.id)
        if row is None:
            raise ConcurrentModification(f"Plan {plan.id} was deleted concurrently", plan_id=plan.id)
        if row.version != plan.version:
            raise ConcurrentModification(
                f"Plan {plan.id} is at version {row.version}, loaded at {plan.version}",
                plan_id=plan.id,
            )
        _copy_plan(row, plan)
        _sync_days(row, plan.daily_completions)
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ConcurrentModification(
                f"Plan {plan.id} was modified by another writer", plan_id=plan.id
            ) from e
        plan.version = row.version
        return plan

    async def delete(self, plan_id: str) -> bool:
        row = await self.get_row(plan_id)
        if row is None:
            return False
        await self.session.delete(row)
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ConcurrentModification(
                f"Plan {plan_id} was modified by another writer", plan_id=plan_id
            ) from e
        return True


class AlertRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def trigger_keys(self, plan_id: str) -> set[tuple[str, str]]:
        result = await self.session.execute(
            select(AlertRow.type, AlertRow.trigger_key).where(AlertRow.plan_id == plan_id)
        )
        return {(t, k) for t, k in result.all()}

    async def add(self, alert: Alert) -> Alert:
        row = AlertRow(
            id=alert.id,
            plan_id=alert.plan_id,
            type=alert.type.value,
            message=alert.message,
            recipient_id=alert.recipient_id,
            trigger_key=alert.trigger_key,
            triggered_at=alert.triggered_at,
            is_read=alert.is_read,
            action_url=alert.action_url,
            alert_metadata=alert.metadata,
        )
        self.session.add(row)
        await self.session.flush()
        return alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        row = await self.session.get(AlertRow, alert_id)
        return alert_from_row(row) if row else None

    async def list(
        self,
        recipient_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        unread_only: bool = False,
        limit: int = 100,
    ) -> list[Alert]:
        stmt = select(AlertRow)
        if recipient_id:
            stmt = stmt.where(AlertRow.recipient_id == recipient_id)
        if plan_id:
            stmt = stmt.where(AlertRow.plan_id == plan_id)
        if unread_only:
            stmt = stmt.where(AlertRow.is_read.is_(False))
        stmt = stmt.order_by(AlertRow.triggered_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [alert_from_row(row) for row in result.scalars().all()]

    async def mark_read(self, alert_id: str) -> Optional[Alert]:
        row = await self.session.get(AlertRow, alert_id)
        if row is None:
            return None
        row.is_read = True
        await self.session.flush()
        return alert_from_row(row)

    async def delete_for_plan(self, plan_id: str) -> int:
        result = await self.session.execute(delete(AlertRow).where(AlertRow.plan_id == plan_id))
        return result.rowcount or 0


class CheckInRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, check_in: CheckIn) -> CheckIn:
        self.session.add(
            CheckInRow(
                id=check_in.id,
                worker_id=check_in.worker_id,
                case_id=check_in.case_id,
                checked_in_at=check_in.checked_in_at,
                exercise_completed=check_in.exercise_completed,
                medication_taken=check_in.medication_taken,
                pain_level=check_in.pain_level,
                notes=check_in.notes,
            )
        )
        await self.session.flush()
        return check_in

    async def list_for_worker(self, worker_id: str) -> list[CheckIn]:
        stmt = (
            select(CheckInRow)
            .where(CheckInRow.worker_id == worker_id)
            .order_by(CheckInRow.checked_in_at)
        )
        result = await self.session.execute(stmt)
        return [
            CheckIn(
                id=row.id,
                worker_id=row.worker_id,
                case_id=row.case_id,
                checked_in_at=row.checked_in_at,
                exercise_completed=row.exercise_completed,
                medication_taken=row.medication_taken,
                pain_level=row.pain_level,
                notes=row.notes,
            )
            for row in result.scalars().all()
        ]


class AuditRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_action(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            details=details,
            timestamp=datetime.now(timezone.utc),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_resource(self, resource_type: str, resource_id: str) -> Sequence[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.timestamp)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


# ---------------------------------------------------------------------------
# Row <-> model mapping
# ---------------------------------------------------------------------------

def _copy_plan(row: PlanRow, plan: RehabilitationPlan) -> None:
    row.worker_id = plan.worker_id
    row.clinician_id = plan.clinician_id
    row.name = plan.name
    row.description = plan.description
    row.exercises = [e.model_dump(mode="json") for e in plan.exercises]
    row.duration_days = plan.duration_days
    row.start_date = plan.start_date
    row.end_date = plan.end_date
    row.status = plan.status.value
    row.settings = plan.settings.model_dump(mode="json")
    row.progress_stats = plan.progress_stats.model_dump(mode="json") if plan.progress_stats else None
    row.updated_at = plan.updated_at


def _sync_days(row: PlanRow, completions: list[DailyCompletion]) -> None:
    """Update child rows in place, keyed by day and exercise id."""
    wanted = {c.day for c in completions}
    for day_row in list(row.daily_completions):
        if day_row.day not in wanted:
            row.daily_completions.remove(day_row)

    existing = {d.day: d for d in row.daily_completions}
    for completion in completions:
        day_row = existing.get(completion.day)
        if day_row is None:
            row.daily_completions.append(
                DailyCompletionRow(
                    day=completion.day,
                    locked=completion.locked,
                    locked_at=completion.locked_at,
                    records=[_record_row(r, i) for i, r in enumerate(completion.records)],
                )
            )
            continue
        day_row.locked = completion.locked
        day_row.locked_at = completion.locked_at
        _sync_records(day_row, completion.records)


def _sync_records(day_row: DailyCompletionRow, records: list[ExerciseCompletionRecord]) -> None:
    wanted = {r.exercise_id for r in records}
    for record_row in list(day_row.records):
        if record_row.exercise_id not in wanted:
            day_row.records.remove(record_row)

    existing = {r.exercise_id: r for r in day_row.records}
    for position, record in enumerate(records):
        record_row = existing.get(record.exercise_id)
        if record_row is None:
            day_row.records.append(_record_row(record, position))
            continue
        _copy_record(record_row, record, position)


def _record_row(record: ExerciseCompletionRecord, position: int) -> ExerciseCompletionRow:
    row = ExerciseCompletionRow(exercise_id=record.exercise_id)
    _copy_record(row, record, position)
    return row


def _copy_record(row: ExerciseCompletionRow, record: ExerciseCompletionRecord, position: int) -> None:
    row.position = position
    row.status = record.status.value
    row.completed_at = record.completed_at
    row.skipped_at = record.skipped_at
    row.pain_level = record.pain_level
    row.pain_notes = record.pain_notes
    row.skip_reason = record.skip_reason.value if record.skip_reason else None
    row.skip_notes = record.skip_notes
    row.duration_minutes = record.duration_minutes


def plan_from_row(row: PlanRow) -> RehabilitationPlan:
    return RehabilitationPlan.model_validate(
        {
            "id": row.id,
            "case_id": row.case_id,
            "worker_id": row.worker_id,
            "clinician_id": row.clinician_id,
            "name": row.name,
            "description": row.description or "",
            "exercises": row.exercises or [],
            "duration_days": row.duration_days,
            "start_date": row.start_date,
            "end_date": row.end_date,
            "status": row.status,
            "settings": row.settings or {},
            "progress_stats": row.progress_stats,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
            "version": row.version,
            "daily_completions": [
                {
                    "day": d.day,
                    "locked": d.locked,
                    "locked_at": d.locked_at,
                    "records": [
                        {
                            "exercise_id": r.exercise_id,
                            "status": r.status,
                            "completed_at": r.completed_at,
                            "skipped_at": r.skipped_at,
                            "pain_level": r.pain_level,
                            "pain_notes": r.pain_notes,
                            "skip_reason": r.skip_reason,
                            "skip_notes": r.skip_notes,
                            "duration_minutes": r.duration_minutes,
                        }
                        for r in d.records
                    ],
                }
                for d in row.daily_completions
            ],
        }
    )


def alert_from_row(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        plan_id=row.plan_id,
        type=row.type,
        message=row.message,
        recipient_id=row.recipient_id,
        trigger_key=row.trigger_key,
        triggered_at=row.triggered_at,
        is_read=row.is_read,
        action_url=row.action_url,
        metadata=row.alert_metadata or {},
    )
