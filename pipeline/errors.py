from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence


class PipelineError(Exception):
    """Base class for statement pipeline failures."""


class DocumentUnreadable(PipelineError):
    """Source bytes are not a document we can open (corrupt PDF, unsupported type)."""


class ProviderError(PipelineError):
    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class ProviderNotConfigured(ProviderError):
    """Raised by an adapter asked to run without its credentials/binary."""


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    reason: str

    def describe(self) -> str:
        return f"{self.provider}: {self.reason}"


class AllProvidersFailed(PipelineError):
    def __init__(self, failures: Sequence[ProviderFailure]) -> None:
        self.failures: List[ProviderFailure] = list(failures)
        if self.failures:
            message = "all OCR providers failed: " + "; ".join(f.describe() for f in self.failures)
        else:
            message = "no OCR provider configured"
        super().__init__(message)

    def reasons(self) -> List[str]:
        if not self.failures:
            return [str(self)]
        return [f"OCR provider {f.describe()}" for f in self.failures]


class NoTransactionsExtracted(PipelineError):
    def __init__(self, message: str = "no transactions extracted") -> None:
        super().__init__(message)


class InvalidTransition(PipelineError):
    def __init__(self, statement_id: str, current: str, target: str) -> None:
        super().__init__(f"statement {statement_id}: cannot move from {current} to {target}")
        self.statement_id = statement_id
        self.current = current
        self.target = target


class StatementNotFound(PipelineError):
    def __init__(self, statement_id: str) -> None:
        super().__init__(f"statement {statement_id} not found")
        self.statement_id = statement_id


class StatementBusy(PipelineError):
    def __init__(self, statement_id: str) -> None:
        super().__init__(f"statement {statement_id} is already being processed")
        self.statement_id = statement_id


# Flag code attached to transactions, never raised.
AMOUNT_OUT_OF_RANGE = "amount_out_of_range"


class StorageError(PipelineError):
    """The document store could not return or accept the raw bytes."""
