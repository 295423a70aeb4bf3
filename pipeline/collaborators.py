from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from schemas.statement import Statement, Transaction


class DocumentStore(Protocol):
    async def get(self, path: str) -> bytes: ...

    async def put(self, path: str, content: bytes, content_type: str) -> str: ...


class StatementRepository(Protocol):
    async def get(self, statement_id: str) -> Optional[Statement]: ...

    async def save(self, statement: Statement) -> Statement: ...

    async def insert_many(self, statement_id: str, transactions: Sequence[Transaction]) -> int: ...

    async def delete_for_statement(self, statement_id: str) -> int: ...

    async def list_transactions(self, statement_id: str) -> List[Transaction]: ...

    async def list_stale_processing(self, updated_before: datetime) -> List[Statement]: ...


class Notifier(Protocol):
    async def enqueue_notification(self, statement: Statement) -> None: ...
