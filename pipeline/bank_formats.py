from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence


# Shared token building blocks
MDY_DATE = r"\d{1,2}[/\-]\d{1,2}(?:[/\-]\d{2,4})?"
ISO_DATE = r"\d{4}-\d{2}-\d{2}"
DMY_DATE = r"\d{1,2}[-./]\d{1,2}[-./]\d{4}"
MONTH_NAME = r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\.?"
MON_DAY_DATE = rf"{MONTH_NAME}\s+\d{{1,2}}"
DAY_MON_DATE = rf"\d{{1,2}}\s+{MONTH_NAME}\s+\d{{4}}"
# Amounts carry two decimals; bare integers only count at the end of a dated line
AMOUNT = r"\(?[-+]?\s?[$€£]?\s?(?:\d{1,3}(?:[,.']\d{3})+|\d+)[.,]\d{2}\)?"
SIGN = r"[+-]|CR|DR"
# OCR sometimes drops the decimal point; the normalizer flags the scale
BARE_AMOUNT = r"\d{1,3}(?:,\d{3})+|\d{3,}"

DATE_TOKEN = re.compile(
    rf"(?<!\d)(?:{ISO_DATE}|{MDY_DATE}|{DMY_DATE})(?!\d)|\b(?:{DAY_MON_DATE}|{MON_DAY_DATE})\b", re.IGNORECASE
)
AMOUNT_TOKEN = re.compile(rf"(?<![\w.,]){AMOUNT}(?![\d])")
SIGNED_AMOUNT = re.compile(r"[-+()]|\b(?:CR|DR)\b", re.IGNORECASE)


@dataclass
class LineFormat:
    """
    A named set of transaction-line patterns for one statement layout.

    Patterns are tried in order and must define the named groups ``date``,
    ``description`` and ``amount``; ``sign`` and ``balance`` are optional.
    """

    name: str
    patterns: Sequence[Pattern[str]]
    bank_aliases: Sequence[str] = ()
    date_order: str = "mdy"
    # Words some layouts print instead of a sign
    sign_words: Dict[str, str] = field(default_factory=dict)
    # Direction of an amount printed without any sign ("+" where only debits carry a minus)
    unsigned_sign: Optional[str] = None

    @property
    def is_generic(self) -> bool:
        return not self.bank_aliases

    def supports(self, bank_name: Optional[str]) -> bool:
        if not bank_name or self.is_generic:
            return False
        key = f" {_bank_key(bank_name)} "
        return any(f" {alias} " in key for alias in self.bank_aliases)

    def match(self, line: str) -> Optional[re.Match]:
        for pattern in self.patterns:
            m = pattern.match(line)
            if m:
                return m
        return None

    def sign_for(self, raw_sign: Optional[str], amount_text: str = "") -> Optional[str]:
        if not raw_sign:
            if self.unsigned_sign and not SIGNED_AMOUNT.search(amount_text):
                return self.unsigned_sign
            return None
        token = raw_sign.strip().lower()
        if token in self.sign_words:
            return self.sign_words[token]
        if token in ("+", "cr"):
            return "+"
        if token in ("-", "dr"):
            return "-"
        return None


def _bank_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", name.lower()).strip()


def _compile(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


GENERIC = LineFormat(
    name="GENERIC",
    patterns=_compile(
        # date, description, amount, running balance
        rf"^(?P<date>{ISO_DATE}|{DAY_MON_DATE}|{MDY_DATE})\s+(?P<description>.+?)\s+(?P<amount>{AMOUNT})\s*(?P<sign>{SIGN})?\s+(?P<balance>{AMOUNT})$",
        # date, description, trailing signed amount
        rf"^(?P<date>{ISO_DATE}|{DAY_MON_DATE}|{MDY_DATE})\s+(?P<description>.+?)\s+(?P<amount>{AMOUNT})\s*(?P<sign>{SIGN})?$",
        # description first, date at the end
        rf"^(?P<description>.+?)\s+(?P<amount>{AMOUNT})\s*(?P<sign>{SIGN})?\s+(?P<date>{MDY_DATE})$",
        # dated line ending in a bare integer (decimal point lost in OCR)
        rf"^(?P<date>{ISO_DATE}|{DAY_MON_DATE}|{MDY_DATE})\s+(?P<description>.+?)\s+(?P<amount>{BARE_AMOUNT})\s*(?P<sign>{SIGN})?$",
    ),
)

CHASE = LineFormat(
    name="CHASE",
    bank_aliases=("chase", "jpmorgan"),
    patterns=_compile(
        # TRANSACTION DETAIL: DATE DESCRIPTION AMOUNT BALANCE, debits printed with a leading minus
        rf"^(?P<date>\d{{2}}/\d{{2}})\s+(?P<description>.+?)\s+(?P<amount>-?[\d,]+\.\d{{2}})\s+(?P<balance>-?[\d,]+\.\d{{2}})$",
        rf"^(?P<date>\d{{2}}/\d{{2}})\s+(?P<description>.+?)\s+(?P<amount>-?[\d,]+\.\d{{2}})$",
    ),
    unsigned_sign="+",
)

BANK_OF_AMERICA = LineFormat(
    name="BANK_OF_AMERICA",
    bank_aliases=("bank of america", "bankofamerica", "bofa", "boa"),
    patterns=_compile(
        # MM/DD/YY DESCRIPTION AMOUNT; withdrawals and card charges carry a leading minus
        rf"^(?P<date>\d{{2}}/\d{{2}}/\d{{2}})\s+(?P<description>.+?)\s+(?P<amount>-?[\d,]+\.\d{{2}})$",
    ),
    unsigned_sign="+",
)

WELLS_FARGO = LineFormat(
    name="WELLS_FARGO",
    bank_aliases=("wells fargo", "wellsfargo"),
    patterns=_compile(
        # M/D [check no.] DESCRIPTION AMOUNT [ending daily balance]; deposit and withdrawal
        # columns collapse in text, so direction comes from the description
        rf"^(?P<date>\d{{1,2}}/\d{{1,2}})\s+(?:(?P<check>\d{{3,6}})\s+)?(?P<description>.+?)\s+(?P<amount>[\d,]+\.\d{{2}})\s+(?P<balance>[\d,]+\.\d{{2}})$",
        rf"^(?P<date>\d{{1,2}}/\d{{1,2}})\s+(?:(?P<check>\d{{3,6}})\s+)?(?P<description>.+?)\s+(?P<amount>[\d,]+\.\d{{2}})$",
    ),
)

CAPITAL_ONE = LineFormat(
    name="CAPITAL_ONE",
    bank_aliases=("capital one", "capitalone"),
    date_order="mon_d",
    patterns=_compile(
        # Trans date, post date, description, amount ("- $12.00" for credits)
        rf"^(?P<date>{MON_DAY_DATE})\s+(?:{MON_DAY_DATE})\s+(?P<description>.+?)\s+(?P<sign>[+-])?\s*(?P<amount>\$?[\d,]+\.\d{{2}})$",
        rf"^(?P<date>{MON_DAY_DATE})\s+(?P<description>.+?)\s+(?P<sign>[+-])?\s*(?P<amount>\$?[\d,]+\.\d{{2}})$",
    ),
    # On card statements a minus marks a payment/credit
    sign_words={"-": "+", "+": "-"},
)

ING = LineFormat(
    name="ING",
    bank_aliases=("ing", "ing bank", "ing diba"),
    date_order="dmy",
    patterns=_compile(
        # DD-MM-YYYY description amount Af/Bij, comma decimals
        rf"^(?P<date>\d{{2}}[-.]\d{{2}}[-.]\d{{4}})\s+(?P<description>.+?)\s+(?P<amount>(?:\d{{1,3}}(?:\.\d{{3}})+|\d+),\d{{2}})\s+(?P<sign>Af|Bij)$",
        # export layout: debits with a leading minus
        rf"^(?P<date>\d{{2}}[-.]\d{{2}}[-.]\d{{4}})\s+(?P<description>.+?)\s+(?P<amount>-?(?:\d{{1,3}}(?:\.\d{{3}})+|\d+),\d{{2}})$",
    ),
    sign_words={"af": "-", "bij": "+"},
    unsigned_sign="+",
)


class FormatRegistry:
    def __init__(self, formats: Optional[List[LineFormat]] = None, generic: LineFormat = GENERIC) -> None:
        self.formats = formats if formats is not None else [CHASE, BANK_OF_AMERICA, WELLS_FARGO, CAPITAL_ONE, ING]
        self.generic = generic

    def select(self, bank_name: Optional[str]) -> Optional[LineFormat]:
        for fmt in self.formats:
            if fmt.supports(bank_name):
                return fmt
        return None

    def ordered_for(self, bank_name: Optional[str]) -> List[LineFormat]:
        """Bank-specific format for the declared bank first, generic fallback last."""
        specific = self.select(bank_name)
        return [specific, self.generic] if specific else [self.generic]
