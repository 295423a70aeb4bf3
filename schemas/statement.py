from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class StatementStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Direction(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class SourceFile(BaseModel):
    path: str
    mime_type: str = "application/pdf"
    filename: Optional[str] = None
    size: Optional[int] = None


class ExtractedData(BaseModel):
    raw_text: str = ""
    confidence: Optional[float] = None
    low_confidence: bool = False
    header: Dict[str, Any] = Field(default_factory=dict)
    # Provider payload as dumped from the tagged union in schemas.extraction
    provider_output: Optional[Dict[str, Any]] = None


class Statement(BaseModel):
    id: str = Field(default_factory=new_id)
    account_id: Optional[str] = None
    account_name: str
    bank_name: Optional[str] = None
    currency: str = "USD"
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1900, le=2999)
    source_file: SourceFile
    status: StatementStatus = StatementStatus.PENDING
    processing_errors: List[str] = Field(default_factory=list)
    processing_warnings: List[str] = Field(default_factory=list)

    ocr_provider: Optional[str] = None
    pages: Optional[int] = None
    extracted_data: Optional[ExtractedData] = None
    extracted_at: Optional[datetime] = None
    transactions_found: int = 0
    transactions_imported: int = 0

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.strip().upper()[:8] or "USD"

    def touch(self) -> None:
        self.updated_at = _utcnow()


class Transaction(BaseModel):
    id: str = Field(default_factory=new_id)
    statement_id: str
    position: int
    txn_date: date
    description: str
    amount_minor: int
    direction: Direction
    category: Optional[str] = None
    balance_minor: Optional[int] = None
    original_amount_minor: Optional[int] = None
    corrected_amount_minor: Optional[int] = None
    flags: List[str] = Field(default_factory=list)
    confidence: float = 0.8

    def signature(self) -> tuple:
        """Fields that identify a transaction independent of its id (used to compare runs)."""
        return (self.position, self.txn_date, self.description, self.amount_minor, self.direction)
