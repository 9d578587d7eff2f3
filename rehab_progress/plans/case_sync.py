"""Case-status synchronisation after plan completion.

Two separate steps: the primary write asking the case store for
``return_to_work``, and a delayed read-back that repairs the status when the
case store did not apply it. The second step runs in a background task and
never affects the committed plan.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from rehab_progress.integrations.case_store import CaseStore
from rehab_progress.integrations.notifications import NotificationSink
from rehab_progress.observability.logger import EngineEventLogger
from rehab_progress.plans.errors import CollaboratorError, PartialSyncWarning
from rehab_progress.plans.models import CaseStatus

logger = logging.getLogger(__name__)

TARGET_STATUS = CaseStatus.RETURN_TO_WORK.value
SETTLED_STATUSES = frozenset({CaseStatus.RETURN_TO_WORK.value, CaseStatus.CLOSED.value})


@dataclass
class SyncOutcome:
    """Result of the verify-and-repair step."""

    ok: bool
    observed_status: Optional[str]
    warning: Optional[PartialSyncWarning] = None


class CaseStatusSynchronizer:
    """Drives the case to ``return_to_work`` when its plan completes."""

    def __init__(
        self,
        case_store: CaseStore,
        notifications: NotificationSink,
        events: Optional[EngineEventLogger] = None,
        verify_delay_ms: int = 500,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.case_store = case_store
        self.notifications = notifications
        self.events = events
        self.verify_delay_ms = verify_delay_ms
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    async def request_transition(self, case_id: str) -> Optional[str]:
        """Primary write. Returns the requested status, or None if the write failed."""
        try:
            await self.case_store.set_case_status(case_id, TARGET_STATUS)
        except CollaboratorError as e:
            logger.error("Case %s status update failed: %s", case_id, e)
            return None
        return TARGET_STATUS

    async def verify_and_repair(
        self,
        case_id: str,
        clinician_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> SyncOutcome:
        """Re-read the case status after the configured delay and repair divergence."""
        if self.verify_delay_ms:
            await self._sleep(self.verify_delay_ms / 1000)

        try:
            observed = await self.case_store.get_case_status(case_id)
        except CollaboratorError as e:
            logger.error("Case %s status read-back failed: %s", case_id, e)
            observed = None
        except Exception:
            logger.exception("Case %s status read-back raised unexpectedly", case_id)
            observed = None

        if observed in SETTLED_STATUSES:
            if self.events:
                self.events.log_case_sync(case_id, TARGET_STATUS, observed, plan_id=plan_id)
            return SyncOutcome(ok=True, observed_status=observed)

        repaired = True
        try:
            await self.case_store.set_case_status(case_id, TARGET_STATUS)
        except CollaboratorError as e:
            logger.error("Corrective status update for case %s failed: %s", case_id, e)
            repaired = False

        warning = PartialSyncWarning(
            case_id=case_id,
            expected_status=TARGET_STATUS,
            observed_status=observed,
            repaired=repaired,
        )
        logger.warning(warning.message)
        if self.events:
            self.events.log_case_sync(case_id, TARGET_STATUS, observed, repaired=repaired, plan_id=plan_id)
        if clinician_id:
            await self._notify_divergence(clinician_id, warning, plan_id)
        return SyncOutcome(ok=False, observed_status=observed, warning=warning)

    async def dispatch(
        self,
        case_id: str,
        clinician_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> tuple[Optional[str], "asyncio.Task[SyncOutcome]"]:
        """Run the primary write, then schedule verify-and-repair in the background."""
        requested = await self.request_transition(case_id)
        task = asyncio.create_task(
            self.verify_and_repair(case_id, clinician_id=clinician_id, plan_id=plan_id),
            name=f"case-sync-{case_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return requested, task

    def _task_done(self, task: "asyncio.Task[SyncOutcome]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Case sync task %s failed", task.get_name(), exc_info=error)

    async def drain(self) -> None:
        """Wait for outstanding verify-and-repair tasks. Failures are logged by ``_task_done``."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _notify_divergence(
        self,
        clinician_id: str,
        warning: PartialSyncWarning,
        plan_id: Optional[str],
    ) -> None:
        try:
            await self.notifications.send(
                clinician_id,
                "case_status_sync_warning",
                "Case status needs attention",
                warning.message,
                {**warning.details, "plan_id": plan_id},
            )
        except CollaboratorError as e:
            logger.error("Could not notify clinician %s of case sync divergence: %s", clinician_id, e)
            if self.events:
                self.events.log_notification_failure(clinician_id, "case_status_sync_warning", str(e))
