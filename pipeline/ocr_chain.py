from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

from pipeline.errors import AllProvidersFailed, ProviderError, ProviderFailure, ProviderNotConfigured
from pipeline.json_logger import get_json_logger
from pipeline.ocr_providers import OCRProvider, default_providers
from schemas.extraction import OCRResult
from settings.config import settings


logger = get_json_logger("ocr_chain")


class OCRProviderChain:
    """
    Tries OCR providers strictly in the given order until one yields usable text.

    Providers without configuration are skipped and do not count as failures.
    Every call re-runs extraction; nothing is cached between runs.
    """

    def __init__(self, providers: Optional[Sequence[OCRProvider]] = None, min_text_chars: Optional[int] = None) -> None:
        self.providers: List[OCRProvider] = list(providers) if providers is not None else default_providers()
        self.min_text_chars = settings.OCR_MIN_TEXT_CHARS if min_text_chars is None else min_text_chars

    async def run(self, content: bytes, mime_type: str) -> OCRResult:
        failures: List[ProviderFailure] = []
        skipped: List[str] = []

        for provider in self.providers:
            if not provider.is_configured():
                skipped.append(provider.name)
                continue
            try:
                result = await asyncio.wait_for(provider.transcribe(content, mime_type), timeout=provider.timeout)
            except asyncio.TimeoutError:
                failures.append(ProviderFailure(provider.name, f"timed out after {provider.timeout:g}s"))
                logger.warning("ocr_provider_timeout", extra={"extra": {"provider": provider.name, "timeout": provider.timeout}})
                continue
            except ProviderNotConfigured as exc:
                # Discovered late (e.g. binary vanished); treat like a skip
                skipped.append(provider.name)
                logger.info("ocr_provider_unavailable", extra={"extra": {"provider": provider.name, "reason": exc.reason}})
                continue
            except ProviderError as exc:
                failures.append(ProviderFailure(provider.name, exc.reason))
                logger.warning("ocr_provider_failed", extra={"extra": {"provider": provider.name, "reason": exc.reason}})
                continue

            usable = len((result.text or "").strip())
            if usable < self.min_text_chars:
                failures.append(ProviderFailure(provider.name, f"text below usable length ({usable} < {self.min_text_chars} chars)"))
                logger.warning("ocr_provider_insufficient_text", extra={"extra": {"provider": provider.name, "chars": usable}})
                continue

            result.suppressed = [f.describe() for f in failures]
            logger.info(
                "ocr_provider_succeeded",
                extra={"extra": {"provider": provider.name, "chars": usable, "suppressed": len(failures), "skipped": skipped}},
            )
            return result

        logger.error(
            "ocr_all_providers_failed",
            extra={"extra": {"failures": [f.describe() for f in failures], "skipped": skipped}},
        )
        raise AllProvidersFailed(failures)
