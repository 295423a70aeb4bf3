from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class AiVisionPayload(BaseModel):
    kind: Literal["ai-vision"] = "ai-vision"
    model: str
    finish_reasons: List[Optional[str]] = Field(default_factory=list)
    usage: Dict[str, Any] = Field(default_factory=dict)


class TesseractPayload(BaseModel):
    kind: Literal["tesseract"] = "tesseract"
    langs: str = "eng"
    psm: Optional[int] = None
    word_count: int = 0


class TextLayerPayload(BaseModel):
    kind: Literal["text-layer"] = "text-layer"
    page_count: int = 0


# Vendor responses vary; only the fields above are ever read back.
RawProviderOutput = Annotated[
    Union[AiVisionPayload, TesseractPayload, TextLayerPayload],
    Field(discriminator="kind"),
]


class OCRLine(BaseModel):
    text: str
    page: int = 1
    confidence: Optional[float] = None


class OCRResult(BaseModel):
    provider: str
    text: str
    confidence: Optional[float] = None
    lines: List[OCRLine] = Field(default_factory=list)
    pages: int = 1
    raw: Optional[RawProviderOutput] = None
    # Failures of higher-priority providers that were skipped over
    suppressed: List[str] = Field(default_factory=list)

    @classmethod
    def from_text(cls, provider: str, text: str, **kwargs: Any) -> "OCRResult":
        lines = [OCRLine(text=ln.strip()) for ln in text.splitlines() if ln.strip()]
        return cls(provider=provider, text=text, lines=lines, **kwargs)


class TextLayer(BaseModel):
    text: str
    page_count: int


class ParseHints(BaseModel):
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    currency: str = "USD"
    month: Optional[int] = None
    year: Optional[int] = None


class StatementHeader(BaseModel):
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    period: Optional[str] = None
    opening_balance: Optional[str] = None
    closing_balance: Optional[str] = None


class TransactionCandidate(BaseModel):
    position: int
    line_number: int
    date_text: str
    description: str
    amount_text: str
    sign_hint: Optional[Literal["+", "-"]] = None
    balance_text: Optional[str] = None
    pattern: str
    date_order: Literal["mdy", "dmy", "mon_d"] = "mdy"


class ParseResult(BaseModel):
    header: StatementHeader
    candidates: List[TransactionCandidate] = Field(default_factory=list)
    low_confidence: bool = False
    format_name: Optional[str] = None
    # Dated lines no layout recognised
    warnings: List[str] = Field(default_factory=list)
