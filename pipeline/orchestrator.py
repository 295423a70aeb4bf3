from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pipeline.amount_normalizer import AmountNormalizer
from pipeline.collaborators import DocumentStore, Notifier, StatementRepository
from pipeline.errors import (
    AllProvidersFailed,
    DocumentUnreadable,
    InvalidTransition,
    NoTransactionsExtracted,
    StatementNotFound,
    StorageError,
)
from pipeline.json_logger import get_json_logger
from pipeline.locks import StatementLocks
from pipeline.ocr_chain import OCRProviderChain
from pipeline.state_machine import RETRYABLE, StatementStateMachine
from pipeline.statement_parser import StatementParser
from pipeline.text_extractor import TextExtractor
from schemas.extraction import ParseHints, TextLayerPayload
from schemas.statement import ExtractedData, Statement, StatementStatus
from settings.config import settings


logger = get_json_logger("orchestrator")

TEXT_LAYER_PROVIDER = "text-layer"


class PipelineOrchestrator:
    """
    Runs one statement through extraction, parsing and normalisation.

    Pipeline failures end up in ``Statement.processing_errors`` with status
    ``failed``; ``process_statement`` only raises for caller mistakes
    (unknown statement, invalid transition, busy statement in reject mode).
    """

    def __init__(
        self,
        repo: StatementRepository,
        store: Optional[DocumentStore] = None,
        notifier: Optional[Notifier] = None,
        text_extractor: Optional[TextExtractor] = None,
        ocr_chain: Optional[OCRProviderChain] = None,
        parser: Optional[StatementParser] = None,
        normalizer: Optional[AmountNormalizer] = None,
        state_machine: Optional[StatementStateMachine] = None,
        locks: Optional[StatementLocks] = None,
        timeout: Optional[float] = None,
        lock_mode: Optional[str] = None,
        empty_policy: Optional[str] = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.notifier = notifier
        self.text_extractor = text_extractor or TextExtractor()
        self.ocr_chain = ocr_chain or OCRProviderChain()
        self.parser = parser or StatementParser()
        self.normalizer = normalizer or AmountNormalizer()
        self.state = state_machine or StatementStateMachine()
        self.locks = locks or StatementLocks()
        self.timeout = float(timeout if timeout is not None else settings.PIPELINE_TIMEOUT_SECONDS)
        self.lock_mode = lock_mode or settings.STATEMENT_LOCK_MODE
        self.empty_policy = empty_policy or settings.EMPTY_STATEMENT_POLICY
        if self.lock_mode not in ("wait", "reject"):
            raise ValueError(f"unknown lock mode: {self.lock_mode}")
        if self.empty_policy not in ("fail", "complete"):
            raise ValueError(f"unknown empty statement policy: {self.empty_policy}")

    async def _load(self, statement_id: str) -> Statement:
        statement = await self.repo.get(statement_id)
        if statement is None:
            raise StatementNotFound(statement_id)
        return statement

    async def process_statement(
        self,
        statement_id: str,
        content: bytes,
        mime_type: str,
        retry: bool = False,
    ) -> Statement:
        """
        Process ``content`` for a statement and return it in a terminal state.

        A pending statement is started directly; a failed or completed one is
        only re-entered with ``retry=True``, which discards its transactions.
        """
        async with self.locks.hold(statement_id, wait=self.lock_mode == "wait"):
            statement = await self._load(statement_id)
            if retry:
                self.state.begin_retry(statement)
                await self.repo.delete_for_statement(statement.id)
            else:
                self.state.start(statement)
            statement.transactions_found = 0
            statement.transactions_imported = 0
            await self.repo.save(statement)

            started = datetime.now(timezone.utc)
            logger.info(
                "statement_processing_started",
                extra={"extra": {"statement_id": statement.id, "mime_type": mime_type, "bytes": len(content), "retry": retry}},
            )
            try:
                await asyncio.wait_for(self._run(statement, content, mime_type), timeout=self.timeout)
            except asyncio.TimeoutError:
                self._fail_if_processing(statement, ["processing timed out"])
                logger.error("statement_timed_out", extra={"extra": {"statement_id": statement.id, "timeout": self.timeout}})
            except asyncio.CancelledError:
                self._fail_if_processing(statement, ["cancelled"])
                logger.warning("statement_cancelled", extra={"extra": {"statement_id": statement.id}})
                await asyncio.shield(self.repo.save(statement))
                raise
            except Exception as exc:
                logger.exception("statement_unexpected_error", extra={"extra": {"statement_id": statement.id}})
                self._fail_if_processing(statement, [f"unexpected error: {exc}"])

            await self.repo.save(statement)
            logger.info(
                "statement_processing_finished",
                extra={"extra": {
                    "statement_id": statement.id,
                    "status": StatementStatus(statement.status).value,
                    "transactions": statement.transactions_imported,
                    "errors": statement.processing_errors,
                    "duration_ms": int((datetime.now(timezone.utc) - started).total_seconds() * 1000),
                }},
            )

        await self._notify(statement)
        return statement

    async def retry_statement(self, statement_id: str) -> Statement:
        """Re-run a failed or completed statement from its stored source bytes."""
        statement = await self._load(statement_id)
        status = StatementStatus(statement.status)
        # A retry asked for while a local run is in flight queues behind it (or is rejected) at the lock
        in_flight = status == StatementStatus.PROCESSING and self.locks.is_locked(statement.id)
        if status not in RETRYABLE and not in_flight:
            raise InvalidTransition(statement.id, status.value, StatementStatus.PROCESSING.value)
        if self.store is None:
            raise StorageError("no document store configured for retries")
        content = await self.store.get(statement.source_file.path)
        logger.info("statement_retry_requested", extra={"extra": {"statement_id": statement.id, "previous_status": status.value}})
        return await self.process_statement(statement.id, content, statement.source_file.mime_type, retry=True)

    async def fail_stale_statements(
        self,
        older_than: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Fail statements left in processing past the deadline (crashed workers); returns their ids."""
        older_than = older_than or timedelta(minutes=settings.STALE_PROCESSING_MINUTES)
        now = now or datetime.now(timezone.utc)
        failed: List[str] = []
        for candidate in await self.repo.list_stale_processing(now - older_than):
            if self.locks.is_locked(candidate.id):
                continue
            async with self.locks.hold(candidate.id):
                statement = await self.repo.get(candidate.id)
                if statement is None or not self.state.fail_stale(statement, older_than, now=now):
                    continue
                await self.repo.save(statement)
            failed.append(statement.id)
            logger.warning("statement_stale_failed", extra={"extra": {"statement_id": statement.id}})
            await self._notify(statement)
        return failed

    async def _run(self, statement: Statement, content: bytes, mime_type: str) -> None:
        warnings: List[str] = []
        try:
            layer = await asyncio.to_thread(self.text_extractor.extract, content, mime_type)
        except DocumentUnreadable as exc:
            self.state.fail(statement, [str(exc)])
            return

        if layer is not None:
            text = layer.text
            provider = TEXT_LAYER_PROVIDER
            confidence: Optional[float] = 1.0
            pages = layer.page_count
            raw = TextLayerPayload(page_count=layer.page_count)
        else:
            try:
                ocr = await self.ocr_chain.run(content, mime_type)
            except AllProvidersFailed as exc:
                self.state.fail(statement, exc.reasons())
                return
            text = ocr.text
            provider = ocr.provider
            confidence = ocr.confidence
            pages = ocr.pages
            raw = ocr.raw
            warnings.extend(f"OCR fallback after {reason}" for reason in ocr.suppressed)

        hints = ParseHints(
            bank_name=statement.bank_name,
            account_name=statement.account_name,
            currency=statement.currency,
            month=statement.month,
            year=statement.year,
        )
        parsed = self.parser.parse(text, hints)
        normalized = self.normalizer.normalize_all(parsed.candidates, statement.id, hints)
        warnings.extend(parsed.warnings)
        warnings.extend(normalized.warnings)
        if parsed.low_confidence:
            warnings.append("low confidence: no transaction lines recognised")

        statement.ocr_provider = provider
        statement.pages = pages
        statement.extracted_at = datetime.now(timezone.utc)
        statement.extracted_data = ExtractedData(
            raw_text=text,
            confidence=confidence,
            low_confidence=parsed.low_confidence,
            header={**parsed.header.model_dump(exclude_none=True), **normalized.totals()},
            provider_output=raw.model_dump() if raw is not None else None,
        )
        if not statement.bank_name and parsed.header.bank_name:
            statement.bank_name = parsed.header.bank_name
        statement.transactions_found = len(parsed.candidates)

        if not normalized.transactions:
            empty = NoTransactionsExtracted()
            if self.empty_policy == "complete":
                statement.transactions_imported = 0
                self.state.complete(statement, warnings + [str(empty)])
            else:
                statement.processing_warnings = warnings
                self.state.fail(statement, [str(empty)])
            logger.warning("statement_empty", extra={"extra": {"statement_id": statement.id, "policy": self.empty_policy}})
            return

        imported = await self.repo.insert_many(statement.id, normalized.transactions)
        statement.transactions_imported = imported
        self.state.complete(statement, warnings)
        logger.info(
            "statement_completed",
            extra={"extra": {
                "statement_id": statement.id,
                "provider": provider,
                "format": parsed.format_name,
                "found": statement.transactions_found,
                "imported": imported,
                "flagged": sum(1 for t in normalized.transactions if t.flags),
            }},
        )

    def _fail_if_processing(self, statement: Statement, reasons: List[str]) -> None:
        if StatementStatus(statement.status) == StatementStatus.PROCESSING:
            self.state.fail(statement, reasons)

    async def _notify(self, statement: Statement) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.enqueue_notification(statement)
        except Exception:
            # Terminal state is already persisted
            logger.exception("statement_notification_failed", extra={"extra": {"statement_id": statement.id}})
