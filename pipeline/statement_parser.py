from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, List, Optional, Tuple

from pipeline.bank_formats import AMOUNT_TOKEN, DATE_TOKEN, FormatRegistry, LineFormat
from pipeline.json_logger import get_json_logger
from schemas.extraction import ParseHints, ParseResult, StatementHeader, TransactionCandidate


logger = get_json_logger("statement_parser")

MAX_DESCRIPTION_CHARS = 200

BANK_NAME_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(p, re.IGNORECASE), name)
    for p, name in [
        (r"\bjpmorgan chase\b|\bchase\b", "Chase"),
        (r"\bbank of america\b", "Bank of America"),
        (r"\bwells fargo\b", "Wells Fargo"),
        (r"\bcitibank\b", "Citibank"),
        (r"\bcapital one\b", "Capital One"),
        (r"\bpnc\b", "PNC"),
        (r"\btd bank\b", "TD Bank"),
        (r"\bus bank\b", "US Bank"),
        (r"\btruist\b", "Truist"),
        (r"\bfifth third\b", "Fifth Third"),
        (r"\bhuntington\b", "Huntington"),
        (r"\bregions bank\b", "Regions Bank"),
        (r"\bkeybank\b", "KeyBank"),
        (r"\bcitizens bank\b", "Citizens Bank"),
        (r"\bm&t bank\b", "M&T Bank"),
        (r"\bally bank\b", "Ally Bank"),
        (r"\bdiscover bank\b", "Discover Bank"),
        (r"\bsynchrony\b", "Synchrony"),
        (r"\bamerican express\b", "American Express"),
        (r"\bing bank\b|\bing diba\b", "ING"),
    ]
]

ACCOUNT_PATTERNS = [
    re.compile(r"account\s*(?:number|#|no\.?)[\s:]*(\*+\d{4}|\d{4,})", re.IGNORECASE),
    re.compile(r"acct\s*(?:number|#|no\.?)[\s:]*(\*+\d{4}|\d{4,})", re.IGNORECASE),
    re.compile(r"account[\s:]+ending\s+in\s+(\d{4})", re.IGNORECASE),
    re.compile(r"\*{4,}(\d{4})"),
]

PERIOD_PATTERNS = [
    re.compile(r"statement\s*period[\s:]+(.+)", re.IGNORECASE),
    re.compile(r"period\s*ending[\s:]+(.+)", re.IGNORECASE),
    re.compile(r"for\s*(?:the\s*)?(?:month|period)\s*(?:of\s*)?(.+)", re.IGNORECASE),
    re.compile(r"(\w+\s+\d{1,2},?\s*\d{4}\s*-\s*\w+\s+\d{1,2},?\s*\d{4})"),
]

OPENING_RE = re.compile(r"opening\s*balance|beginning\s*balance|previous\s*balance|balance\s*forward", re.IGNORECASE)
CLOSING_RE = re.compile(r"closing\s*balance|ending\s*balance|new\s*balance|current\s*balance", re.IGNORECASE)

# Matched lines whose description is statement furniture rather than activity
NOISE_DESCRIPTION = re.compile(
    r"^(?:"
    r"(?:sub)?totals?(?:\s+(?:for\b.*|debits?|credits?|deposits?(?:\s+and\s+(?:other\s+)?(?:additions|credits))?|"
    r"withdrawals?(?:\s+and\s+(?:other\s+)?(?:subtractions|debits))?|fees?|checks?(?:\s+paid)?|charges?|payments?|"
    r"interest|purchases?|activity|amount|this\s+(?:period|statement)))?\s*:?"
    r"|(?:account\s+|balance\s+|activity\s+)?summary\b.*"
    r"|page\s+\d+.*"
    r"|(?:opening|beginning|previous|closing|ending|new|current|daily)\s*(?:ledger\s+)?balance\b.*"
    r"|balance\s*(?:forward|brought\s+forward|carried\s+forward)\b.*"
    r")$",
    re.IGNORECASE,
)
NOISE_LINE = re.compile(
    r"^(?:page\s+\d+(?:\s+of\s+\d+)?|.*\bcontinued\b.*|date\s+(?:description|transaction).*|(?:sub)?totals?\b.*)$",
    re.IGNORECASE,
)


class StatementParser:
    """
    Turns raw statement text into a header and transaction candidates.

    Each line is classified as header metadata, a transaction line, or noise.
    Transaction lines are matched against the layout of the declared bank
    first and the generic layout second; lines carrying neither a date nor an
    amount directly after a transaction are treated as wrapped descriptions.
    """

    def __init__(self, registry: Optional[FormatRegistry] = None) -> None:
        self.registry = registry or FormatRegistry()

    def parse(self, raw_text: str, hints: Optional[ParseHints] = None) -> ParseResult:
        hints = hints or ParseHints()
        lines = [ln.strip() for ln in (raw_text or "").splitlines()]
        lines = [ln for ln in lines if ln]

        # Undated lines only, so merchant names in activity cannot pick the layout
        bank_name = hints.bank_name or detect_bank_name(ln for ln in lines if not DATE_TOKEN.match(ln))
        formats = self.registry.ordered_for(bank_name)

        candidates: List[TransactionCandidate] = []
        header_lines: List[str] = []
        warnings: List[str] = []
        used_formats: Counter = Counter()
        last: Optional[TransactionCandidate] = None

        for line_number, line in enumerate(lines):
            matched = self._match(formats, line)
            if matched is not None:
                fmt, m = matched
                description = re.sub(r"\s+", " ", m.group("description")).strip()
                if NOISE_DESCRIPTION.match(description):
                    header_lines.append(line)
                    last = None
                    continue
                groups = m.groupdict()
                amount_text = m.group("amount").strip()
                candidate = TransactionCandidate(
                    position=len(candidates),
                    line_number=line_number,
                    date_text=m.group("date").strip(),
                    description=description[:MAX_DESCRIPTION_CHARS],
                    amount_text=amount_text,
                    sign_hint=fmt.sign_for(groups.get("sign"), amount_text),
                    balance_text=(groups.get("balance") or None),
                    pattern=fmt.name,
                    date_order=fmt.date_order,
                )
                candidates.append(candidate)
                used_formats[fmt.name] += 1
                last = candidate
                continue

            header_lines.append(line)
            if self._is_header_line(line) or NOISE_LINE.match(line):
                last = None
                continue

            if last is not None and not DATE_TOKEN.search(line) and not AMOUNT_TOKEN.search(line):
                merged = f"{last.description} {line}".strip()
                last.description = re.sub(r"\s+", " ", merged)[:MAX_DESCRIPTION_CHARS]
                continue

            if DATE_TOKEN.match(line):
                warnings.append(f"line {line_number + 1} unparsed: {line[:60]}")
            last = None

        header = self.scan_header(header_lines)
        low_confidence = bool(lines) and not candidates
        format_name = used_formats.most_common(1)[0][0] if used_formats else None
        logger.info(
            "statement_parsed",
            extra={"extra": {
                "lines": len(lines),
                "candidates": len(candidates),
                "unparsed": len(warnings),
                "format": format_name,
                "bank": bank_name,
                "low_confidence": low_confidence,
            }},
        )
        return ParseResult(
            header=header,
            candidates=candidates,
            low_confidence=low_confidence,
            format_name=format_name,
            warnings=warnings,
        )

    @staticmethod
    def _match(formats: List[LineFormat], line: str):
        for fmt in formats:
            m = fmt.match(line)
            if m:
                return fmt, m
        return None

    @staticmethod
    def _is_header_line(line: str) -> bool:
        if OPENING_RE.search(line) or CLOSING_RE.search(line):
            return True
        if any(p.search(line) for p in ACCOUNT_PATTERNS[:3]):
            return True
        return any(p.search(line) for p in PERIOD_PATTERNS[:2])

    def scan_header(self, lines: List[str]) -> StatementHeader:
        """Header fields from lines that are not transactions."""
        header = StatementHeader(bank_name=detect_bank_name(lines))
        for line in lines:
            if header.account_number is None:
                for pattern in ACCOUNT_PATTERNS:
                    m = pattern.search(line)
                    if m:
                        header.account_number = m.group(1)
                        break
            if header.period is None:
                for pattern in PERIOD_PATTERNS:
                    m = pattern.search(line)
                    if m:
                        header.period = m.group(1).strip()
                        break
            if header.opening_balance is None and OPENING_RE.search(line):
                header.opening_balance = _last_amount(line)
            if header.closing_balance is None and CLOSING_RE.search(line):
                header.closing_balance = _last_amount(line)
        return header


def _last_amount(line: str) -> Optional[str]:
    found = AMOUNT_TOKEN.findall(line)
    return found[-1].strip() if found else None


def detect_bank_name(lines: Iterable[str]) -> Optional[str]:
    for line in lines:
        for pattern, name in BANK_NAME_PATTERNS:
            if pattern.search(line):
                return name
    return None
