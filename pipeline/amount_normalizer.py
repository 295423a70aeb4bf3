from __future__ import annotations

import re
import statistics
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence, Tuple

from pipeline.errors import AMOUNT_OUT_OF_RANGE
from pipeline.json_logger import get_json_logger
from schemas.extraction import ParseHints, TransactionCandidate
from schemas.statement import Direction, Transaction
from settings.config import settings


logger = get_json_logger("amount_normalizer")

CREDIT_KEYWORDS = re.compile(r"deposit|credit|payment\s+received|refund|transfer\s+in|interest", re.IGNORECASE)
DEBIT_KEYWORDS = re.compile(r"withdrawal|debit|payment|purchase|fee|charge|transfer\s+out", re.IGNORECASE)

MONTHS = {m: i for i, m in enumerate(["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1)}
CENT = Decimal("0.01")


def parse_amount_minor(text: str) -> Tuple[int, Optional[str]]:
    """
    Parse an amount token into signed integer minor units.

    ``.`` is the decimal separator unless the token ends in ``,NN`` (exactly two
    digits), in which case ``,`` is decimal and ``.`` groups thousands.
    Returns (minor_units, explicit_sign) where explicit_sign is "+", "-" or None.
    """
    s = (text or "").strip()
    if not s:
        raise ValueError("empty amount")
    sign: Optional[str] = None
    if s.startswith("(") and s.endswith(")"):
        sign = "-"
        s = s[1:-1].strip()
    suffix = re.search(r"\s*(CR|DR)$", s, re.IGNORECASE)
    if suffix:
        sign = "+" if suffix.group(1).upper() == "CR" else "-"
        s = s[: suffix.start()]
    if s.endswith("-") or s.endswith("+"):
        sign = s[-1]
        s = s[:-1]
    s = re.sub(r"[\s$€£₦']", "", s)
    if s[:1] in ("-", "+"):
        sign = s[0]
        s = s[1:]

    if re.search(r",\d{2}$", s):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")
        if s.count(".") > 1:
            s = s.replace(".", "")
    if not re.fullmatch(r"\d+(?:\.\d+)?", s):
        raise ValueError(f"not a monetary amount: {text!r}")
    try:
        value = Decimal(s).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"not a monetary amount: {text!r}") from exc
    minor = int(value * 100)
    return (-minor if sign == "-" else minor), sign


def parse_txn_date(text: str, order: str = "mdy", year_hint: Optional[int] = None, month_hint: Optional[int] = None) -> date:
    s = (text or "").strip()
    default_year = year_hint or date.today().year

    if order == "mon_d":
        m = re.match(r"([A-Za-z]{3})[A-Za-z]*\.?\s+(\d{1,2})", s)
        if not m or m.group(1).lower() not in MONTHS:
            raise ValueError(f"unrecognised date: {text!r}")
        month, day, year = MONTHS[m.group(1).lower()], int(m.group(2)), None
    elif re.match(r"\d{1,2}\s+[A-Za-z]", s):
        m = re.match(r"(\d{1,2})\s+([A-Za-z]{3})[A-Za-z]*\.?,?\s*(\d{4})?$", s)
        if not m or m.group(2).lower() not in MONTHS:
            raise ValueError(f"unrecognised date: {text!r}")
        day, month = int(m.group(1)), MONTHS[m.group(2).lower()]
        year = int(m.group(3)) if m.group(3) else None
    else:
        parts = re.split(r"[/\-.]", s)
        if len(parts) == 3 and len(parts[0]) == 4:
            year, month, day = int(parts[0]), int(parts[1]), int(parts[2])
        elif len(parts) in (2, 3):
            first, second = int(parts[0]), int(parts[1])
            month, day = (second, first) if order == "dmy" else (first, second)
            year = int(parts[2]) if len(parts) == 3 else None
            if year is not None and year < 100:
                year += 2000
        else:
            raise ValueError(f"unrecognised date: {text!r}")

    if year is None:
        year = default_year
        # January statements list late-December activity
        if month_hint == 1 and month == 12:
            year -= 1
    return date(year, month, day)


def infer_direction(amount_minor: int, explicit_sign: Optional[str], description: str) -> Direction:
    if explicit_sign == "+":
        return Direction.CREDIT
    if explicit_sign == "-" or amount_minor < 0:
        return Direction.DEBIT
    if CREDIT_KEYWORDS.search(description):
        return Direction.CREDIT
    if DEBIT_KEYWORDS.search(description):
        return Direction.DEBIT
    return Direction.DEBIT


@dataclass
class NormalizationResult:
    transactions: List[Transaction] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    dropped: int = 0

    def totals(self) -> Dict[str, int]:
        """Debit and credit sums in minor units, both as positive magnitudes."""
        debits = sum(-t.amount_minor for t in self.transactions if t.direction == Direction.DEBIT)
        credits = sum(t.amount_minor for t in self.transactions if t.direction == Direction.CREDIT)
        return {"total_debits_minor": debits, "total_credits_minor": credits}


class AmountNormalizer:
    """
    Converts transaction candidates into Transactions with integer minor units
    and flags OCR scale errors (extra or dropped digits).

    Flagged amounts are never silently replaced: the original and the
    corrected value are both kept on the transaction, and the correction
    policy decides which one becomes ``amount_minor``.
    """

    def __init__(
        self,
        ceiling: Optional[int] = None,
        extreme_threshold: Optional[int] = None,
        median_ratio: Optional[int] = None,
        policy: Optional[str] = None,
    ) -> None:
        self.ceiling_minor = int(ceiling if ceiling is not None else settings.AMOUNT_SANITY_CEILING) * 100
        self.extreme_minor = int(extreme_threshold if extreme_threshold is not None else settings.AMOUNT_EXTREME_THRESHOLD) * 100
        self.median_ratio = int(median_ratio if median_ratio is not None else settings.AMOUNT_MEDIAN_RATIO)
        self.policy = policy or settings.AMOUNT_CORRECTION_POLICY
        if self.policy not in ("auto_correct", "review"):
            raise ValueError(f"unknown amount correction policy: {self.policy}")

    def is_out_of_range(self, magnitude: int, sibling_median: Optional[int]) -> bool:
        if magnitude > self.ceiling_minor:
            return True
        if not sibling_median or magnitude <= self.extreme_minor:
            return False
        return magnitude > sibling_median * self.median_ratio

    def correct(self, magnitude: int, sibling_median: Optional[int]) -> int:
        """Best-guess value: drop trailing zeros toward the siblings' order of magnitude."""
        value = magnitude
        target = sibling_median * 10 if sibling_median else None
        while value > 0 and value % 10 == 0 and ((target is not None and value >= target) or value > self.ceiling_minor):
            value //= 10
        while value > self.ceiling_minor:
            value = (value + 5) // 10
        return value

    def normalize(
        self,
        candidate: TransactionCandidate,
        statement_id: str,
        hints: Optional[ParseHints] = None,
        sibling_median: Optional[int] = None,
    ) -> Transaction:
        hints = hints or ParseHints()
        signed, explicit_sign = parse_amount_minor(candidate.amount_text)
        sign = candidate.sign_hint or explicit_sign
        direction = infer_direction(signed, sign, candidate.description)
        magnitude = abs(signed)
        txn_date = parse_txn_date(candidate.date_text, candidate.date_order, hints.year, hints.month)

        balance_minor: Optional[int] = None
        if candidate.balance_text:
            try:
                balance_minor = parse_amount_minor(candidate.balance_text)[0]
            except ValueError:
                balance_minor = None

        flags: List[str] = []
        original: Optional[int] = None
        corrected: Optional[int] = None
        applied = magnitude
        if self.is_out_of_range(magnitude, sibling_median):
            flags.append(AMOUNT_OUT_OF_RANGE)
            original = magnitude
            corrected = self.correct(magnitude, sibling_median)
            applied = corrected if self.policy == "auto_correct" else magnitude

        sign_factor = 1 if direction == Direction.CREDIT else -1
        return Transaction(
            statement_id=statement_id,
            position=candidate.position,
            txn_date=txn_date,
            description=candidate.description,
            amount_minor=sign_factor * applied,
            direction=direction,
            balance_minor=balance_minor,
            original_amount_minor=None if original is None else sign_factor * original,
            corrected_amount_minor=None if corrected is None else sign_factor * corrected,
            flags=flags,
            confidence=0.5 if flags else 0.8,
        )

    def normalize_all(
        self,
        candidates: Sequence[TransactionCandidate],
        statement_id: str,
        hints: Optional[ParseHints] = None,
    ) -> NormalizationResult:
        result = NormalizationResult()
        magnitudes: List[Optional[int]] = []
        for c in candidates:
            try:
                magnitudes.append(abs(parse_amount_minor(c.amount_text)[0]))
            except ValueError:
                magnitudes.append(None)

        for idx, candidate in enumerate(candidates):
            siblings = [m for j, m in enumerate(magnitudes) if j != idx and m is not None]
            median = int(statistics.median(siblings)) if siblings else None
            try:
                txn = self.normalize(candidate, statement_id, hints, sibling_median=median)
            except ValueError as exc:
                result.dropped += 1
                result.warnings.append(f"line {candidate.line_number + 1} skipped: {exc}")
                logger.warning("candidate_dropped", extra={"extra": {"line": candidate.line_number, "reason": str(exc)}})
                continue
            # Positions stay contiguous after drops
            txn.position = len(result.transactions)
            if txn.flags:
                result.warnings.append(
                    f"transaction {txn.position + 1} ({txn.description[:40]}): amount "
                    f"{_fmt_minor(txn.original_amount_minor)} looks out of range, suggested "
                    f"{_fmt_minor(txn.corrected_amount_minor)}"
                )
                logger.warning(
                    "amount_out_of_range",
                    extra={"extra": {
                        "statement_id": statement_id,
                        "position": txn.position,
                        "original_minor": txn.original_amount_minor,
                        "corrected_minor": txn.corrected_amount_minor,
                        "median_minor": median,
                        "policy": self.policy,
                    }},
                )
            result.transactions.append(txn)
        return result


def _fmt_minor(value: Optional[int]) -> str:
    if value is None:
        return "n/a"
    return f"{Decimal(abs(value)) / 100:,.2f}"
