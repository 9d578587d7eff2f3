"""Per-plan and per-case asyncio locks."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class PlanLockRegistry:
    """Hands out one lock per plan id and one per case id.

    Mutations of a plan run under its lock from load to commit; creation runs
    under the case lock. Different plans never contend. An entry lives only
    while some task holds or waits for it.
    """

    def __init__(self) -> None:
        self._plan_locks: dict[str, _Entry] = {}
        self._case_locks: dict[str, _Entry] = {}

    @asynccontextmanager
    async def _hold(self, table: dict[str, _Entry], key: str):
        entry = table.setdefault(key, _Entry())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and table.get(key) is entry:
                del table[key]

    def plan(self, plan_id: str):
        return self._hold(self._plan_locks, plan_id)

    def case(self, case_id: str):
        return self._hold(self._case_locks, case_id)
