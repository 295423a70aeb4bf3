from __future__ import annotations

from io import BytesIO
from typing import List, Optional

import pdfplumber
from pypdf import PdfReader, PdfWriter

from pipeline.errors import DocumentUnreadable
from pipeline.json_logger import get_json_logger
from schemas.extraction import TextLayer
from settings.config import settings


PDF_MIME = "application/pdf"

logger = get_json_logger("text_extractor")


def normalize_mime(mime_type: Optional[str]) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def is_image_mime(mime_type: Optional[str]) -> bool:
    return normalize_mime(mime_type).startswith("image/")


def is_pdf_mime(mime_type: Optional[str]) -> bool:
    return normalize_mime(mime_type) == PDF_MIME


def ensure_readable_pdf(content: bytes) -> bytes:
    """
    Validate the PDF structure and return bytes pdfplumber can open.

    Encrypted PDFs are decrypted when they open with an empty user password
    (common for bank exports); anything else raises DocumentUnreadable.
    """
    try:
        reader = PdfReader(BytesIO(content))
    except Exception as exc:
        raise DocumentUnreadable(f"PDF could not be loaded: {exc}") from exc

    if not getattr(reader, "is_encrypted", False):
        return content

    try:
        # pypdf returns 0 on failure
        if reader.decrypt("") == 0:
            raise DocumentUnreadable("PDF is password protected")
    except DocumentUnreadable:
        raise
    except Exception as exc:
        raise DocumentUnreadable(f"PDF decryption failed: {exc}") from exc

    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


class TextExtractor:
    """
    Fast path: read the embedded text layer of a PDF without OCR.

    Returns None whenever OCR is needed instead (images, scanned PDFs, text
    layers that are empty or too short to be a statement).
    """

    def __init__(
        self,
        min_chars: Optional[int] = None,
        max_pages: Optional[int] = None,
        max_chars_per_page: Optional[int] = None,
    ) -> None:
        self.min_chars = settings.TEXT_LAYER_MIN_CHARS if min_chars is None else min_chars
        self.max_pages = max_pages or settings.MAX_PAGES
        self.max_chars_per_page = max_chars_per_page or settings.MAX_CHARS_PER_PAGE

    def extract(self, content: bytes, mime_type: str) -> Optional[TextLayer]:
        if is_image_mime(mime_type):
            return None
        if not is_pdf_mime(mime_type):
            raise DocumentUnreadable(f"unsupported document type: {mime_type or 'unknown'}")

        pdf_bytes = ensure_readable_pdf(content)
        page_texts: List[str] = []
        try:
            with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
                page_count = len(pdf.pages)
                for page in pdf.pages[: self.max_pages]:
                    text = page.extract_text() or ""
                    page_texts.append(text[: self.max_chars_per_page])
        except Exception as exc:
            raise DocumentUnreadable(f"PDF text extraction failed: {exc}") from exc

        text = "\n".join(t for t in page_texts if t.strip())
        if len(text.strip()) < max(1, self.min_chars):
            logger.info("text_layer_insufficient", extra={"extra": {"pages": page_count, "chars": len(text.strip())}})
            return None
        if page_count > self.max_pages:
            logger.warning("pdf_pages_exceed_limit", extra={"extra": {"pages": page_count, "max_pages": self.max_pages}})
        return TextLayer(text=text, page_count=page_count)
