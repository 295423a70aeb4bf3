from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, Optional

from pipeline.errors import InvalidTransition
from pipeline.json_logger import get_json_logger
from schemas.statement import Statement, StatementStatus


logger = get_json_logger("state_machine")

PENDING = StatementStatus.PENDING
PROCESSING = StatementStatus.PROCESSING
COMPLETED = StatementStatus.COMPLETED
FAILED = StatementStatus.FAILED

# Re-entry into processing from a terminal state only happens through an explicit retry.
TRANSITIONS: Dict[StatementStatus, FrozenSet[StatementStatus]] = {
    PENDING: frozenset({PROCESSING, FAILED}),
    PROCESSING: frozenset({COMPLETED, FAILED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
}
RETRYABLE: FrozenSet[StatementStatus] = frozenset({COMPLETED, FAILED})


class StatementStateMachine:
    """Owns Statement.status; every status change goes through here."""

    def can_transition(self, current: StatementStatus, target: StatementStatus, retry: bool = False) -> bool:
        if retry and target == PROCESSING:
            return current in RETRYABLE
        return target in TRANSITIONS[current]

    def _move(self, statement: Statement, target: StatementStatus, retry: bool = False) -> None:
        current = StatementStatus(statement.status)
        if not self.can_transition(current, target, retry=retry):
            raise InvalidTransition(statement.id, current.value, target.value)
        statement.status = target
        statement.touch()
        logger.info(
            "statement_transition",
            extra={"extra": {"statement_id": statement.id, "from": current.value, "to": target.value, "retry": retry}},
        )

    def start(self, statement: Statement, retry: bool = False) -> Statement:
        """pending → processing, or (retry) failed|completed → processing. Clears prior errors."""
        self._move(statement, PROCESSING, retry=retry)
        statement.processing_errors = []
        statement.processing_warnings = []
        return statement

    def begin_retry(self, statement: Statement) -> Statement:
        if StatementStatus(statement.status) not in RETRYABLE:
            raise InvalidTransition(statement.id, StatementStatus(statement.status).value, PROCESSING.value)
        return self.start(statement, retry=True)

    def complete(self, statement: Statement, warnings: Optional[Iterable[str]] = None) -> Statement:
        self._move(statement, COMPLETED)
        statement.processing_errors = []
        statement.processing_warnings = list(warnings or [])
        return statement

    def fail(self, statement: Statement, reasons: Iterable[str]) -> Statement:
        self._move(statement, FAILED)
        statement.processing_errors = [r for r in reasons if r] or ["processing failed"]
        return statement

    def is_stale(self, statement: Statement, older_than: timedelta, now: Optional[datetime] = None) -> bool:
        if StatementStatus(statement.status) != PROCESSING:
            return False
        now = now or datetime.now(timezone.utc)
        updated = statement.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return now - updated > older_than

    def fail_stale(self, statement: Statement, older_than: timedelta, now: Optional[datetime] = None) -> bool:
        """Move a run that outlived its deadline to failed; returns True when it did."""
        if not self.is_stale(statement, older_than, now=now):
            return False
        self.fail(statement, ["processing timed out"])
        return True
