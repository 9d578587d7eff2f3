"""Pydantic models for rehabilitation plans, completions and derived statistics."""

import uuid
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class PlanStatus(str, Enum):
    """Plan lifecycle statuses."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PlanStatus.ACTIVE


class ExerciseStatus(str, Enum):
    """Outcome of one exercise on one day."""

    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class DayStatus(str, Enum):
    """Overall status of a daily completion."""

    NOT_STARTED = "not_started"
    PARTIAL = "partial"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    PAIN = "pain"
    FATIGUE = "fatigue"
    TIME_CONSTRAINT = "time_constraint"
    EQUIPMENT = "equipment"
    OTHER = "other"


class ExerciseCategory(str, Enum):
    STRETCHING = "stretching"
    STRENGTHENING = "strengthening"
    CARDIO = "cardio"
    FLEXIBILITY = "flexibility"
    BALANCE = "balance"
    OTHER = "other"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class PainTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    FLUCTUATING = "fluctuating"
    UNKNOWN = "unknown"


class AlertType(str, Enum):
    SKIPPED_SESSIONS = "skipped_sessions"
    PROGRESS_MILESTONE = "progress_milestone"
    HIGH_PAIN = "high_pain"
    INCREASING_PAIN_TREND = "increasing_pain_trend"


class CaseStatus(str, Enum):
    """Case statuses known to the case store. Only the last two are written here."""

    NEW = "new"
    TRIAGED = "triaged"
    ASSESSED = "assessed"
    IN_REHAB = "in_rehab"
    RETURN_TO_WORK = "return_to_work"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Plan definition
# ---------------------------------------------------------------------------

class ExerciseSpec(BaseModel):
    """A prescribed exercise (catalog entry)."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    instructions: Optional[str] = None
    target_repetitions: Optional[str] = Field(default=None, description="e.g. '3x10' or '30 seconds'")
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    category: ExerciseCategory = ExerciseCategory.OTHER
    difficulty: Difficulty = Difficulty.EASY
    reference_media_url: Optional[str] = None


class PlanSettings(BaseModel):
    """Per-plan alert thresholds. ``None`` falls back to the engine defaults."""

    max_consecutive_skips: Optional[int] = Field(default=None, ge=1)
    progress_milestone_days: Optional[int] = Field(default=None, ge=1)


class PlanSpec(BaseModel):
    """A clinician's plan form as submitted for creation."""

    case_id: str
    worker_id: str
    clinician_id: str
    name: str = "Recovery Plan"
    description: str = "Daily recovery exercises and activities"
    duration_days: float
    exercises: list[ExerciseSpec] = Field(default_factory=list)
    start_date: Optional[date] = None
    settings: PlanSettings = Field(default_factory=PlanSettings)


class PlanEdit(BaseModel):
    """Clinician edit of an active plan."""

    name: Optional[str] = None
    description: Optional[str] = None
    duration_days: float
    exercises: list[ExerciseSpec]
    settings: Optional[PlanSettings] = None


# ---------------------------------------------------------------------------
# Daily completion
# ---------------------------------------------------------------------------

class ExerciseCompletionRecord(BaseModel):
    """Outcome of one exercise on one day."""

    exercise_id: str
    status: ExerciseStatus = ExerciseStatus.PENDING
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    pain_level: Optional[int] = Field(default=None, ge=0, le=10)
    pain_notes: Optional[str] = None
    skip_reason: Optional[SkipReason] = None
    skip_notes: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)


class DailyCompletion(BaseModel):
    """Exercise outcomes for one plan on one calendar day."""

    day: date
    records: list[ExerciseCompletionRecord] = Field(default_factory=list)
    locked: bool = False
    locked_at: Optional[datetime] = None

    def record_for(self, exercise_id: str) -> Optional[ExerciseCompletionRecord]:
        return next((r for r in self.records if r.exercise_id == exercise_id), None)

    @property
    def all_completed(self) -> bool:
        return bool(self.records) and all(r.status == ExerciseStatus.COMPLETED for r in self.records)

    def count(self, status: ExerciseStatus) -> int:
        return sum(1 for r in self.records if r.status == status)

    @property
    def overall_status(self) -> DayStatus:
        if not self.records:
            return DayStatus.NOT_STARTED
        completed = self.count(ExerciseStatus.COMPLETED)
        skipped = self.count(ExerciseStatus.SKIPPED)
        total = len(self.records)
        if completed == total:
            return DayStatus.COMPLETED
        if skipped == total:
            return DayStatus.SKIPPED
        if completed or skipped:
            return DayStatus.PARTIAL
        return DayStatus.NOT_STARTED


# ---------------------------------------------------------------------------
# Derived statistics
# ---------------------------------------------------------------------------

class PainReport(BaseModel):
    """Average reported pain for one day."""

    day: date
    average_pain_level: float
    exercise_count: int


class PainStats(BaseModel):
    average_pain_level: float = 0.0
    last_reported_pain_level: Optional[float] = None
    last_reported_pain_date: Optional[date] = None
    pain_trend: PainTrend = PainTrend.UNKNOWN
    history: list[PainReport] = Field(default_factory=list)


class ProgressStats(BaseModel):
    """Counters derived from a plan's daily completions. Never authored directly."""

    total_days: int
    completed_days: int = 0
    skipped_days: int = 0
    consecutive_completed_days: int = 0
    consecutive_skipped_days: int = 0
    progress_percentage: int = 0
    last_completed_date: Optional[date] = None
    last_skipped_date: Optional[date] = None
    pain: PainStats = Field(default_factory=PainStats)


# ---------------------------------------------------------------------------
# Plan aggregate
# ---------------------------------------------------------------------------

class RehabilitationPlan(BaseModel):
    """A prescribed, time-boxed program for one case."""

    id: str = Field(default_factory=new_id)
    case_id: str
    worker_id: str
    clinician_id: str
    name: str
    description: str = ""
    exercises: list[ExerciseSpec]
    duration_days: int = Field(ge=1, le=365)
    start_date: date
    end_date: Optional[date] = None
    status: PlanStatus = PlanStatus.ACTIVE
    settings: PlanSettings = Field(default_factory=PlanSettings)
    daily_completions: list[DailyCompletion] = Field(default_factory=list)
    progress_stats: Optional[ProgressStats] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = 0

    @property
    def last_day(self) -> date:
        """Final calendar day covered by the plan."""
        return self.start_date + timedelta(days=self.duration_days - 1)

    @property
    def exercise_ids(self) -> list[str]:
        return [e.id for e in self.exercises if e.id]

    def find_exercise(self, exercise_id: str) -> Optional[ExerciseSpec]:
        return next((e for e in self.exercises if e.id == exercise_id), None)

    def completion_for(self, day: date) -> Optional[DailyCompletion]:
        return next((d for d in self.daily_completions if d.day == day), None)


# ---------------------------------------------------------------------------
# Alerts, check-ins and compliance
# ---------------------------------------------------------------------------

class Alert(BaseModel):
    """Threshold event raised from a plan's statistics."""

    id: str = Field(default_factory=new_id)
    plan_id: str
    type: AlertType
    message: str
    recipient_id: str
    trigger_key: str
    triggered_at: datetime = Field(default_factory=_utcnow)
    is_read: bool = False
    action_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CheckIn(BaseModel):
    """A worker's daily check-in, the input to compliance scoring."""

    id: str = Field(default_factory=new_id)
    worker_id: str
    case_id: Optional[str] = None
    checked_in_at: datetime
    exercise_completed: bool
    medication_taken: Optional[bool] = Field(
        default=None, description="None when medication is not tracked for the worker"
    )
    pain_level: Optional[int] = Field(default=None, ge=0, le=10)
    notes: Optional[str] = None

    @property
    def is_compliant(self) -> bool:
        return self.exercise_completed and self.medication_taken is not False


class ComplianceScore(BaseModel):
    worker_id: str
    window_start: date
    window_end: date
    total_check_ins: int
    compliant_check_ins: int
    score: int
    is_compliant: bool


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

class TodayExercise(BaseModel):
    exercise: ExerciseSpec
    record: ExerciseCompletionRecord


class TodayView(BaseModel):
    day: date
    exercises: list[TodayExercise]
    overall_status: DayStatus
    locked: bool


class DaySummary(BaseModel):
    day: date
    completed_exercises: int
    skipped_exercises: int
    total_exercises: int
    overall_status: DayStatus
    locked: bool = False


class ExerciseDayStatus(BaseModel):
    day: date
    status: ExerciseStatus
    skip_reason: Optional[SkipReason] = None
    pain_level: Optional[int] = None


class ExerciseProgress(BaseModel):
    exercise_id: str
    name: str
    category: ExerciseCategory
    difficulty: Difficulty
    recorded_days: int
    completed_count: int
    skipped_count: int
    completion_rate: int
    recent: list[ExerciseDayStatus] = Field(default_factory=list)


class ProgressView(BaseModel):
    """Everything a progress dashboard needs for one plan."""

    plan: RehabilitationPlan
    today: TodayView
    progress_stats: ProgressStats
    last_7_days: list[DaySummary]
    exercise_progress: list[ExerciseProgress]
    alerts: list[Alert]
    stats_cache_consistent: bool


class PlanSummary(BaseModel):
    active_plans: int = 0
    completed_plans: int = 0
    average_progress: int = 0
