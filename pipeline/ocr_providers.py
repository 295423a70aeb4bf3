from __future__ import annotations

import asyncio
import base64
import shutil
from abc import ABC, abstractmethod
from io import BytesIO
from typing import Dict, List, Optional, Tuple

import pdfplumber
import pytesseract
from openai import APIError, APITimeoutError, AsyncOpenAI
from PIL import Image, UnidentifiedImageError

from pipeline.errors import ProviderError, ProviderNotConfigured
from pipeline.json_logger import get_json_logger
from pipeline.text_extractor import is_image_mime, is_pdf_mime
from schemas.extraction import AiVisionPayload, OCRLine, OCRResult, TesseractPayload
from settings.config import settings


logger = get_json_logger("ocr_providers")

SYSTEM_PROMPT = (
    "You are a high-accuracy OCR engine for bank statements. "
    "Transcribe the text exactly as written. Do not summarize or reformat. "
    "Keep one printed line per output line, preserving dates, descriptions and amounts "
    "(including signs, currency symbols, commas and decimal points) in their original order."
)
USER_PROMPT = "Transcribe every visible line of this bank statement. Return plain text only."


def load_page_images(content: bytes, mime_type: str, dpi: int, max_pages: int) -> List[Image.Image]:
    """Decode an image upload, or rasterise the first ``max_pages`` pages of a PDF."""
    if is_image_mime(mime_type):
        img = Image.open(BytesIO(content))
        img.load()
        return [img.convert("RGB") if img.mode not in ("RGB", "L") else img]
    if not is_pdf_mime(mime_type):
        raise ValueError(f"cannot rasterise {mime_type}")
    images: List[Image.Image] = []
    with pdfplumber.open(BytesIO(content)) as pdf:
        for page in pdf.pages[:max_pages]:
            page_image = page.to_image(resolution=dpi)
            pil_img = getattr(page_image, "original", None)
            if pil_img is None:
                pil_img = getattr(page_image, "image", None)
            if pil_img is not None:
                images.append(pil_img.convert("RGB"))
    return images


def _png_bytes(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class OCRProvider(ABC):
    """An OCR backend the provider chain can fall back across."""

    name: str = "base"

    def __init__(self, timeout: float) -> None:
        self.timeout = float(timeout)

    @abstractmethod
    def is_configured(self) -> bool:
        """False when credentials or binaries are missing; the chain then skips us."""
        raise NotImplementedError

    @abstractmethod
    async def transcribe(self, content: bytes, mime_type: str) -> OCRResult:
        """Return the transcription or raise ProviderError."""
        raise NotImplementedError


class AiVisionProvider(OCRProvider):
    """
    Vision-model transcription through an OpenAI-compatible chat completions API.

    Pointing OCR_AI_BASE_URL at OpenRouter (or any compatible gateway) lets the
    same adapter drive other vision models.
    """

    name = "ai-vision"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        dpi: Optional[int] = None,
        max_pages: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        super().__init__(timeout or settings.OCR_AI_TIMEOUT_SECONDS)
        self.api_key = api_key if api_key is not None else settings.OCR_AI_API_KEY
        self.base_url = base_url or settings.OCR_AI_BASE_URL
        self.model = model or settings.OCR_AI_MODEL
        self.max_tokens = max_tokens or settings.OCR_AI_MAX_TOKENS
        self.dpi = dpi or settings.OCR_DPI
        self.max_pages = max_pages or settings.OCR_MAX_PAGES
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ProviderNotConfigured(self.name, "OCR_AI_API_KEY not configured")
            # Fallback to the next provider replaces SDK-level retries
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def _image_parts(self, content: bytes, mime_type: str) -> List[Dict[str, object]]:
        if is_image_mime(mime_type):
            encoded = [(mime_type, content)]
        else:
            images = load_page_images(content, mime_type, self.dpi, self.max_pages)
            encoded = [("image/png", _png_bytes(img)) for img in images]
        return [
            {
                "type": "image_url",
                "image_url": {"url": f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"},
            }
            for mime, data in encoded
        ]

    async def transcribe(self, content: bytes, mime_type: str) -> OCRResult:
        client = self._get_client()
        try:
            image_parts = await asyncio.to_thread(self._image_parts, content, mime_type)
        except (OSError, ValueError, UnidentifiedImageError) as exc:
            raise ProviderError(self.name, f"could not prepare page images: {exc}") from exc
        if not image_parts:
            raise ProviderError(self.name, "document has no pages to transcribe")

        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": [{"type": "text", "text": USER_PROMPT}, *image_parts]},
                ],
                temperature=0.0,
                max_tokens=self.max_tokens,
            )
        except APITimeoutError as exc:
            raise ProviderError(self.name, "request timed out") from exc
        except APIError as exc:
            raise ProviderError(self.name, f"API error: {exc}") from exc

        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise ProviderError(self.name, "malformed response: no choices")
        text = "\n".join((c.message.content or "") for c in choices if c.message is not None).strip()
        if not text:
            raise ProviderError(self.name, "empty transcription")

        usage = resp.usage.model_dump() if getattr(resp, "usage", None) is not None else {}
        raw = AiVisionPayload(
            model=getattr(resp, "model", None) or self.model,
            finish_reasons=[c.finish_reason for c in choices],
            usage=usage,
        )
        return OCRResult.from_text(self.name, text, pages=len(image_parts), raw=raw)


class TesseractProvider(OCRProvider):
    """Classical OCR via the tesseract binary; runs in a worker thread."""

    name = "tesseract"

    def __init__(
        self,
        enabled: Optional[bool] = None,
        langs: Optional[str] = None,
        psm: Optional[int] = None,
        timeout: Optional[float] = None,
        dpi: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        super().__init__(timeout or settings.OCR_TESSERACT_TIMEOUT_SECONDS)
        self.enabled = settings.OCR_TESSERACT_ENABLED if enabled is None else enabled
        self.langs = langs or settings.OCR_TESSERACT_LANGS
        self.psm = psm or settings.OCR_TESSERACT_PSM
        self.dpi = dpi or settings.OCR_DPI
        self.max_pages = max_pages or settings.OCR_MAX_PAGES

    def is_configured(self) -> bool:
        return bool(self.enabled) and shutil.which(pytesseract.pytesseract.tesseract_cmd) is not None

    async def transcribe(self, content: bytes, mime_type: str) -> OCRResult:
        if not self.is_configured():
            raise ProviderNotConfigured(self.name, "tesseract binary not available")
        try:
            lines, confidence, words, pages = await asyncio.to_thread(self._recognize, content, mime_type)
        except pytesseract.TesseractNotFoundError as exc:
            raise ProviderNotConfigured(self.name, "tesseract binary not available") from exc
        except (pytesseract.TesseractError, RuntimeError) as exc:
            # pytesseract reports its own subprocess timeout as RuntimeError
            raise ProviderError(self.name, str(exc)) from exc
        except (OSError, ValueError, UnidentifiedImageError) as exc:
            raise ProviderError(self.name, f"could not read image: {exc}") from exc

        text = "\n".join(line.text for line in lines)
        raw = TesseractPayload(langs=self.langs, psm=self.psm, word_count=words)
        return OCRResult(provider=self.name, text=text, confidence=confidence, lines=lines, pages=pages, raw=raw)

    def _recognize(self, content: bytes, mime_type: str) -> Tuple[List[OCRLine], Optional[float], int, int]:
        images = load_page_images(content, mime_type, self.dpi, self.max_pages)
        lines: List[OCRLine] = []
        confidences: List[float] = []
        for page_no, img in enumerate(images, start=1):
            data = pytesseract.image_to_data(
                img,
                lang=self.langs,
                config=f"--psm {self.psm} -c preserve_interword_spaces=1",
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )
            page_lines, page_confs = lines_from_tesseract_data(data, page_no)
            lines.extend(page_lines)
            confidences.extend(page_confs)
        confidence = sum(confidences) / len(confidences) if confidences else None
        return lines, confidence, len(confidences), len(images)


def lines_from_tesseract_data(data: Dict[str, list], page: int) -> Tuple[List[OCRLine], List[float]]:
    """Group tesseract word boxes back into printed lines (document order)."""
    grouped: Dict[Tuple[int, int, int], List[Tuple[str, float]]] = {}
    order: List[Tuple[int, int, int]] = []
    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        if not word:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        if key not in grouped:
            grouped[key] = []
            order.append(key)
        grouped[key].append((word, float(data["conf"][i])))

    lines: List[OCRLine] = []
    all_confs: List[float] = []
    for key in order:
        words = grouped[key]
        confs = [c for _, c in words if c >= 0]
        all_confs.extend(confs)
        lines.append(
            OCRLine(
                text=" ".join(w for w, _ in words),
                page=page,
                confidence=(sum(confs) / len(confs)) if confs else None,
            )
        )
    return lines, all_confs


def default_providers() -> List[OCRProvider]:
    """Providers in fallback order: AI vision first, classical OCR second."""
    return [AiVisionProvider(), TesseractProvider()]
