import os
import sys

# Keep real OCR backends and queues out of unit tests
os.environ.setdefault("OCR_TESSERACT_ENABLED", "false")
os.environ.setdefault("OCR_AI_API_KEY", "")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")


def pytest_sessionstart(session):
    # Ensure project root is on sys.path so `pipeline` and `schemas` resolve
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


# --- Test utilities: in-memory collaborators and document builders ---
import asyncio
from io import BytesIO
from typing import Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from PIL import Image
from pypdf import PdfWriter

from pipeline.errors import ProviderError, StorageError
from pipeline.locks import StatementLocks
from pipeline.ocr_chain import OCRProviderChain
from pipeline.ocr_providers import OCRProvider
from pipeline.orchestrator import PipelineOrchestrator
from schemas.extraction import OCRResult
from schemas.statement import SourceFile, Statement, Transaction


class FakeDocumentStore:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}

    async def put(self, path: str, content: bytes, content_type: str) -> str:
        self.objects[path] = content
        return path

    async def get(self, path: str) -> bytes:
        if path not in self.objects:
            raise StorageError(f"could not fetch {path}: NoSuchKey")
        return self.objects[path]


class FakeStatementRepository:
    """Keeps copies, like a real database would, so callers cannot mutate stored rows."""

    def __init__(self) -> None:
        self.statements: Dict[str, Statement] = {}
        self.transactions: Dict[str, List[Transaction]] = {}
        self.status_history: Dict[str, List[str]] = {}

    async def get(self, statement_id: str) -> Optional[Statement]:
        stored = self.statements.get(statement_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def save(self, statement: Statement) -> Statement:
        self.statements[statement.id] = statement.model_copy(deep=True)
        self.status_history.setdefault(statement.id, []).append(statement.status.value)
        return statement

    async def insert_many(self, statement_id: str, transactions: Sequence[Transaction]) -> int:
        self.transactions.setdefault(statement_id, []).extend(t.model_copy(deep=True) for t in transactions)
        return len(transactions)

    async def delete_for_statement(self, statement_id: str) -> int:
        return len(self.transactions.pop(statement_id, []))

    async def list_transactions(self, statement_id: str) -> List[Transaction]:
        return sorted((t.model_copy(deep=True) for t in self.transactions.get(statement_id, [])), key=lambda t: t.position)

    async def list_stale_processing(self, updated_before) -> List[Statement]:
        return [
            s.model_copy(deep=True)
            for s in self.statements.values()
            if s.status.value == "processing" and s.updated_at < updated_before
        ]


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Statement] = []

    async def enqueue_notification(self, statement: Statement) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.sent.append(statement.model_copy(deep=True))


class FakeProvider(OCRProvider):
    """Scripted OCR backend: returns ``text`` or raises ``error`` after ``delay`` seconds."""

    def __init__(
        self,
        name: str,
        text: str = "",
        error: Optional[Exception] = None,
        delay: float = 0.0,
        configured: bool = True,
        timeout: float = 5.0,
    ) -> None:
        super().__init__(timeout)
        self.name = name
        self.text = text
        self.error = error
        self.delay = delay
        self.configured = configured
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def is_configured(self) -> bool:
        return self.configured

    async def transcribe(self, content: bytes, mime_type: str) -> OCRResult:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return OCRResult.from_text(self.name, self.text)
        finally:
            self.in_flight -= 1


def failing_provider(name: str, reason: str = "quota exceeded") -> FakeProvider:
    return FakeProvider(name, error=ProviderError(name, reason))


def make_text_pdf(lines: Sequence[str]) -> bytes:
    """Single-page PDF with a real text layer (Courier, one string per line)."""
    ops = ["BT", "/F1 10 Tf", "14 TL", "40 760 Td"]
    for line in lines:
        escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        ops.append(f"({escaped}) Tj T*")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Courier >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


def make_blank_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue()


def make_png() -> bytes:
    buf = BytesIO()
    Image.new("RGB", (64, 32), "white").save(buf, format="PNG")
    return buf.getvalue()


STATEMENT_LINES = [
    "First Community Bank",
    "Account Number: ****4821",
    "Statement Period: 01/01/2024 - 01/31/2024",
    "Opening Balance 1,000.00",
    "Date Description Amount Balance",
    "01/03/2024 Coffee Shop 4.50 995.50",
    "01/05/2024 Grocery Store 82.10 913.40",
    "01/09/2024 Payroll Deposit 2,500.00 + 3,413.40",
    "01/12/2024 Electric Utility 120.00 3,293.40",
    "Closing Balance 3,293.40",
]

SCANNED_LINES = [
    "01/02/2024 Coffee Shop 4.50",
    "01/03/2024 Bakery 6.25",
    "01/04/2024 Grocery Store 45.00",
    "01/05/2024 Gas Station 38.40",
    "01/08/2024 Pharmacy 12.99",
    "01/10/2024 Bookstore 22.00",
    "01/12/2024 Restaurant 64.75",
    "01/15/2024 Online Subscription 9.99",
    "01/18/2024 Hardware Store 31.20",
    "01/22/2024 Cinema 15.00",
]


@pytest.fixture
def repo() -> FakeStatementRepository:
    return FakeStatementRepository()


@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def make_orchestrator(repo, store, notifier):
    def _build(providers=None, **kwargs) -> PipelineOrchestrator:
        chain = OCRProviderChain(providers=providers if providers is not None else [], min_text_chars=10)
        kwargs.setdefault("locks", StatementLocks())
        return PipelineOrchestrator(repo=repo, store=store, notifier=notifier, ocr_chain=chain, **kwargs)

    return _build


@pytest_asyncio.fixture
async def make_statement(repo, store):
    async def _create(
        content: bytes,
        mime_type: str = "application/pdf",
        bank_name: Optional[str] = None,
        month: int = 1,
        year: int = 2024,
    ) -> Statement:
        statement = Statement(
            account_name="Everyday Checking",
            bank_name=bank_name,
            month=month,
            year=year,
            source_file=SourceFile(path="", mime_type=mime_type, filename="statement", size=len(content)),
        )
        statement.source_file.path = await store.put(f"statements/{statement.id}/statement", content, mime_type)
        await repo.save(statement)
        return statement

    yield _create
