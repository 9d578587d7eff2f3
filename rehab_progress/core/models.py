"""SQLAlchemy 2.0 async models for plans, completions, alerts and check-ins."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class PlanRow(Base):
    __tablename__ = "rehab_plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    case_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    clinician_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    exercises: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    # cache only; rebuilt from daily_completions on every read
    progress_stats: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    daily_completions: Mapped[list[DailyCompletionRow]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="DailyCompletionRow.day",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("ix_rehab_plans_status", "status"),)


class DailyCompletionRow(Base):
    __tablename__ = "daily_completions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rehab_plans.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[date] = mapped_column(Date, nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, default=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    plan: Mapped[PlanRow] = relationship(back_populates="daily_completions")
    records: Mapped[list[ExerciseCompletionRow]] = relationship(
        back_populates="daily_completion",
        cascade="all, delete-orphan",
        order_by="ExerciseCompletionRow.position",
        lazy="selectin",
    )

    __table_args__ = (UniqueConstraint("plan_id", "day", name="uq_daily_completion_plan_day"),)


class ExerciseCompletionRow(Base):
    __tablename__ = "exercise_completions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    daily_completion_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("daily_completions.id", ondelete="CASCADE"), nullable=False
    )
    exercise_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    skipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    pain_level: Mapped[int | None] = mapped_column(Integer)
    pain_notes: Mapped[str | None] = mapped_column(Text)
    skip_reason: Mapped[str | None] = mapped_column(String(30))
    skip_notes: Mapped[str | None] = mapped_column(Text)
    duration_minutes: Mapped[int | None] = mapped_column(Integer)

    daily_completion: Mapped[DailyCompletionRow] = relationship(back_populates="records")

    __table_args__ = (
        UniqueConstraint("daily_completion_id", "exercise_id", name="uq_exercise_completion_day_exercise"),
    )


class AlertRow(Base):
    __tablename__ = "plan_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("rehab_plans.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_key: Mapped[str] = mapped_column(String(64), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    action_url: Mapped[str | None] = mapped_column(String(255))
    alert_metadata: Mapped[dict | None] = mapped_column("metadata", JSON)

    __table_args__ = (
        UniqueConstraint("plan_id", "type", "trigger_key", name="uq_plan_alert_trigger"),
        Index("ix_plan_alerts_recipient", "recipient_id", "is_read"),
    )


class CheckInRow(Base):
    __tablename__ = "check_ins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    case_id: Mapped[str | None] = mapped_column(String(64))
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    exercise_completed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    medication_taken: Mapped[bool | None] = mapped_column(Boolean)
    pain_level: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_check_ins_worker_time", "worker_id", "checked_in_at"),)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str | None] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_audit_resource", "resource_type", "resource_id"),
        Index("ix_audit_timestamp", "timestamp"),
    )
