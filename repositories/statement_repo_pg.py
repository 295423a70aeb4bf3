from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import StatementRow, TransactionRow
from db.postgres import get_session_factory
from schemas.statement import (
    Direction,
    ExtractedData,
    SourceFile,
    Statement,
    StatementStatus,
    Transaction,
)


def statement_to_row_values(statement: Statement) -> dict:
    return {
        "id": statement.id,
        "account_id": statement.account_id,
        "account_name": statement.account_name,
        "bank_name": statement.bank_name,
        "currency": statement.currency,
        "month": statement.month,
        "year": statement.year,
        "source_path": statement.source_file.path,
        "source_mime_type": statement.source_file.mime_type,
        "source_filename": statement.source_file.filename,
        "source_size": statement.source_file.size,
        "status": StatementStatus(statement.status).value,
        "processing_errors": list(statement.processing_errors),
        "processing_warnings": list(statement.processing_warnings),
        "ocr_provider": statement.ocr_provider,
        "pages": statement.pages,
        "extracted_data": statement.extracted_data.model_dump(mode="json") if statement.extracted_data else None,
        "extracted_at": statement.extracted_at,
        "transactions_found": statement.transactions_found,
        "transactions_imported": statement.transactions_imported,
        "created_at": statement.created_at,
        "updated_at": statement.updated_at,
    }


def statement_from_row(row: StatementRow) -> Statement:
    return Statement(
        id=row.id,
        account_id=row.account_id,
        account_name=row.account_name,
        bank_name=row.bank_name,
        currency=row.currency,
        month=row.month,
        year=row.year,
        source_file=SourceFile(
            path=row.source_path,
            mime_type=row.source_mime_type,
            filename=row.source_filename,
            size=row.source_size,
        ),
        status=StatementStatus(row.status),
        processing_errors=list(row.processing_errors or []),
        processing_warnings=list(row.processing_warnings or []),
        ocr_provider=row.ocr_provider,
        pages=row.pages,
        extracted_data=ExtractedData.model_validate(row.extracted_data) if row.extracted_data else None,
        extracted_at=row.extracted_at,
        transactions_found=row.transactions_found,
        transactions_imported=row.transactions_imported,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        statement_id=row.statement_id,
        position=row.position,
        txn_date=row.txn_date,
        description=row.description,
        amount_minor=row.amount_minor,
        direction=Direction(row.direction),
        category=row.category,
        balance_minor=row.balance_minor,
        original_amount_minor=row.original_amount_minor,
        corrected_amount_minor=row.corrected_amount_minor,
        flags=list(row.flags or []),
        confidence=row.confidence,
    )


class StatementRepositoryPg:
    """
    Statement and transaction persistence on Postgres.

    Each call runs in its own session and transaction, so the repository can
    be shared by long-lived pipeline objects.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def get(self, statement_id: str) -> Optional[Statement]:
        async with self._session_factory() as session:
            row = await session.get(StatementRow, statement_id)
            return statement_from_row(row) if row is not None else None

    async def save(self, statement: Statement) -> Statement:
        values = statement_to_row_values(statement)
        async with self._session_factory() as session, session.begin():
            row = await session.get(StatementRow, statement.id, with_for_update=True)
            if row is None:
                session.add(StatementRow(**values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
        return statement

    async def insert_many(self, statement_id: str, transactions: Sequence[Transaction]) -> int:
        async with self._session_factory() as session, session.begin():
            return await self._insert(session, statement_id, transactions)

    async def delete_for_statement(self, statement_id: str) -> int:
        async with self._session_factory() as session, session.begin():
            res = await session.execute(delete(TransactionRow).where(TransactionRow.statement_id == statement_id))
            return res.rowcount or 0

    async def list_transactions(self, statement_id: str) -> List[Transaction]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.statement_id == statement_id)
            .order_by(TransactionRow.position)
        )
        async with self._session_factory() as session:
            res = await session.execute(stmt)
            return [transaction_from_row(r) for r in res.scalars().all()]

    async def list_stale_processing(self, updated_before: datetime) -> List[Statement]:
        stmt = (
            select(StatementRow)
            .where(StatementRow.status == StatementStatus.PROCESSING.value)
            .where(StatementRow.updated_at < updated_before)
            .order_by(StatementRow.updated_at)
        )
        async with self._session_factory() as session:
            res = await session.execute(stmt)
            return [statement_from_row(r) for r in res.scalars().all()]

    @staticmethod
    async def _insert(session: AsyncSession, statement_id: str, transactions: Sequence[Transaction]) -> int:
        rows = [
            {
                "id": t.id,
                "statement_id": statement_id,
                "position": t.position,
                "txn_date": t.txn_date,
                "description": t.description,
                "amount_minor": t.amount_minor,
                "direction": Direction(t.direction).value,
                "category": t.category,
                "balance_minor": t.balance_minor,
                "original_amount_minor": t.original_amount_minor,
                "corrected_amount_minor": t.corrected_amount_minor,
                "flags": list(t.flags),
                "confidence": t.confidence,
            }
            for t in transactions
        ]
        if not rows:
            return 0
        await session.execute(insert(TransactionRow), rows)
        return len(rows)
