"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rehab_progress.api.app import create_app
from rehab_progress.api.dependencies import get_now
from rehab_progress.config import Settings
from rehab_progress.core.models import Base
from rehab_progress.integrations.case_store import CaseStore
from rehab_progress.integrations.notifications import NotificationSink
from rehab_progress.observability.logger import EngineEventLogger
from rehab_progress.plans.errors import CollaboratorError
from rehab_progress.plans.service import PlanService

# Monday afternoon; a 7-day plan starting START ends today.
NOW = datetime(2026, 3, 9, 15, 0, tzinfo=timezone.utc)
START = date(2026, 3, 3)

EXERCISES = [
    {"id": "ex-stretch", "name": "Hamstring stretch", "category": "stretching"},
    {"id": "ex-squat", "name": "Wall squat", "category": "strengthening", "difficulty": "medium"},
]


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeCaseStore(CaseStore):
    """Case store double.

    ``drop_writes`` silently ignores that many status writes, the way a case
    store that acknowledges but never applies an update behaves.
    """

    def __init__(
        self,
        statuses: Optional[dict[str, str]] = None,
        drop_writes: int = 0,
        fail_writes: bool = False,
        fail_reads: bool = False,
    ):
        self.statuses = dict(statuses or {})
        self.drop_writes = drop_writes
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads
        self.writes: list[tuple[str, str]] = []
        self.reads: list[str] = []

    async def get_case_status(self, case_id: str) -> Optional[str]:
        self.reads.append(case_id)
        if self.fail_reads:
            raise CollaboratorError("case store unreachable")
        return self.statuses.get(case_id)

    async def set_case_status(self, case_id: str, status: str) -> None:
        self.writes.append((case_id, status))
        if self.fail_writes:
            raise CollaboratorError("case store unreachable")
        if self.drop_writes:
            self.drop_writes -= 1
            return
        self.statuses[case_id] = status


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification; ``fail=True`` makes delivery raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    async def send(self, recipient_id, type, title, message, metadata=None) -> None:
        if self.fail:
            raise CollaboratorError("notification service unreachable")
        self.sent.append(
            {
                "recipient_id": recipient_id,
                "type": type,
                "title": title,
                "message": message,
                "metadata": metadata or {},
            }
        )

    def of_type(self, notification_type: str) -> list[dict[str, Any]]:
        return [n for n in self.sent if n["type"] == notification_type]


async def no_sleep(seconds: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Settings, database, service
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite+aiosqlite://",
        event_log_dir=tmp_path / "logs",
        event_log_enabled=True,
        local_timezone="UTC",
        case_sync_verify_delay_ms=0,
        api_key="",
    )


@pytest.fixture
def events(tmp_path):
    return EngineEventLogger(log_dir=tmp_path / "logs", enabled=True)


@pytest.fixture
def case_store():
    return FakeCaseStore({"case-1": "in_rehab", "case-2": "in_rehab"})


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def service(session_factory, settings, case_store, notifications, events):
    svc = PlanService(
        session_factory,
        settings=settings,
        case_store=case_store,
        notifications=notifications,
        events=events,
        sleep=no_sleep,
    )
    yield svc
    await svc.close()


@pytest.fixture
def plan_factory(service):
    """Create a plan through the service with test defaults."""

    async def _create(**overrides):
        data = {
            "case_id": "case-1",
            "worker_id": "worker-1",
            "clinician_id": "clin-1",
            "name": "Knee rehab",
            "duration_days": 7,
            "exercises": EXERCISES,
            "start_date": START,
            "now": NOW,
        }
        data.update(overrides)
        return await service.create_plan(**data)

    return _create


@pytest_asyncio.fixture
async def api_client(service, settings):
    """HTTP client against the app wired to the test service, with the clock pinned to NOW."""
    app = create_app(settings, with_lifespan=False)
    app.state.plan_service = service
    app.dependency_overrides[get_now] = lambda: NOW

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
