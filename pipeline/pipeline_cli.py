from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import os
from datetime import date
from typing import Any, Dict, List, Optional

from pipeline.amount_normalizer import AmountNormalizer
from pipeline.errors import AllProvidersFailed, DocumentUnreadable
from pipeline.ocr_chain import OCRProviderChain
from pipeline.statement_parser import StatementParser
from pipeline.text_extractor import TextExtractor
from schemas.extraction import ParseHints
from settings.logging_config import configure_logging


async def extract_file(
    content: bytes,
    mime_type: str,
    hints: ParseHints,
    extractor: Optional[TextExtractor] = None,
    chain: Optional[OCRProviderChain] = None,
) -> Dict[str, Any]:
    """Run extraction, parsing and normalisation for one document without persisting anything."""
    extractor = extractor or TextExtractor()
    layer = extractor.extract(content, mime_type)
    if layer is not None:
        text, provider, suppressed = layer.text, "text-layer", []
    else:
        ocr = await (chain or OCRProviderChain()).run(content, mime_type)
        text, provider, suppressed = ocr.text, ocr.provider, ocr.suppressed

    parsed = StatementParser().parse(text, hints)
    normalized = AmountNormalizer().normalize_all(parsed.candidates, "cli", hints)
    return {
        "provider": provider,
        "suppressed": suppressed,
        "format": parsed.format_name,
        "header": parsed.header.model_dump(exclude_none=True),
        "low_confidence": parsed.low_confidence,
        "candidates": len(parsed.candidates),
        "transactions": [
            {
                "date": t.txn_date.isoformat(),
                "description": t.description,
                "amount_minor": t.amount_minor,
                "direction": t.direction.value,
                "flags": t.flags,
            }
            for t in normalized.transactions
        ],
        "totals": normalized.totals(),
        "warnings": parsed.warnings + normalized.warnings,
    }


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Extract transactions from statement PDFs or images and print a JSON summary")
    parser.add_argument("paths", nargs="+", help="PDF or image file paths")
    parser.add_argument("--bank", default=None, help="Bank name hint (selects a bank-specific line format)")
    parser.add_argument("--year", type=int, default=None, help="Statement year for dates without one (default: current year)")
    parser.add_argument("--month", type=int, default=None, help="Statement month")
    parser.add_argument("--verbose", action="store_true", help="Print every transaction, not only counts")
    args = parser.parse_args(argv)

    configure_logging()
    hints = ParseHints(bank_name=args.bank, year=args.year or date.today().year, month=args.month)

    for path in args.paths:
        if not os.path.exists(path):
            print(json.dumps({"file": path, "error": "not_found"}))
            continue
        mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            content = f.read()
        try:
            result = asyncio.run(extract_file(content, mime_type, hints))
        except (DocumentUnreadable, AllProvidersFailed) as e:
            print(json.dumps({"file": path, "error": str(e)}))
            continue
        summary: Dict[str, Any] = {"file": path, **result}
        if not args.verbose:
            summary["transactions"] = len(result["transactions"])
        print(json.dumps(summary, ensure_ascii=False))


if __name__ == "__main__":
    main()
