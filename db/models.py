from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import JSON, TIMESTAMP, BigInteger, Date, Float, ForeignKey, Integer, SmallInteger, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class StatementRow(Base):
    __tablename__ = "statements"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    account_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    account_name: Mapped[str] = mapped_column(Text, nullable=False)
    bank_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, server_default="USD")
    month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)

    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    source_mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    source_filename: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="pending")
    processing_errors: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    processing_warnings: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    ocr_provider: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pages: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    extracted_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    extracted_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    transactions_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transactions_imported: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)


class TransactionRow(Base):
    __tablename__ = "statement_transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    statement_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("statements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    balance_minor: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    original_amount_minor: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    corrected_amount_minor: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    flags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)
