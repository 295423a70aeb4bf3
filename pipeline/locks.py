from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from pipeline.errors import StatementBusy


class StatementLocks:
    """
    Advisory locks keyed by statement id, one pipeline run per statement at a time.

    Locks are process-local. Across processes, queued runs are deduplicated by
    their per-statement arq job id (see workers.statement_worker).
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    def is_locked(self, statement_id: str) -> bool:
        lock = self._locks.get(statement_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, statement_id: str, wait: bool = True) -> AsyncIterator[None]:
        lock = self._locks.setdefault(statement_id, asyncio.Lock())
        if not wait and lock.locked():
            raise StatementBusy(statement_id)
        self._waiters[statement_id] = self._waiters.get(statement_id, 0) + 1
        try:
            await lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[statement_id] -= 1
            if self._waiters[statement_id] == 0:
                del self._waiters[statement_id]
                self._locks.pop(statement_id, None)
