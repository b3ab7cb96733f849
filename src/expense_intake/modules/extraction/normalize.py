from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from expense_intake.core.currencies import SYMBOL_TO_CURRENCY

UNKNOWN_MERCHANT = "Unknown Merchant"

_MERCHANT_NOISE = (
    re.compile(r"\s*\*.*$"),  # "UBER *TRIP 3HXY", "SQ *BLUE BOTTLE"
    re.compile(r"\s+#\d+.*$"),  # store numbers
    re.compile(r"\s+\d{4}.*$"),  # terminal / location codes
    re.compile(r"\s+-\s+.*$"),  # " - Downtown"
)

_NUMBER_RE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?")
_SYMBOL_RE = re.compile("[" + "".join(re.escape(s) for s in SYMBOL_TO_CURRENCY) + "]")

_ROBUST_DATE_FORMATS = (
    (re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"), "ymd"),
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"), "mdy"),
    (re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})"), "mdy"),
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{2})"), "mdyy"),
    (re.compile(r"(\d{1,2})-(\d{1,2})-(\d{2})"), "mdyy"),
)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CurrencyAmount:
    amount: Decimal
    currency: str
    symbol: str


def normalize_merchant(name: str | None) -> str:
    """Strip trip codes, store numbers and location suffixes, then title-case."""
    if not name:
        return UNKNOWN_MERCHANT
    s = re.sub(r"\s+", " ", str(name))
    for pattern in _MERCHANT_NOISE:
        s = pattern.sub("", s)
    s = s.strip()
    s = " ".join(w.capitalize() for w in s.split(" ") if w)
    return s or UNKNOWN_MERCHANT


def normalize_currency(
    amount: str | int | float | Decimal | None, default: str = "USD"
) -> CurrencyAmount:
    """
    Split a raw amount into a numeric value and a currency.

    When no symbol is present the returned symbol is a literal ``$`` whatever
    ``default`` is; use ``currency`` rather than ``symbol`` to tell them apart.
    """
    text = _amount_text(amount)

    value = Decimal("0")
    m = _NUMBER_RE.search(text)
    if m:
        try:
            value = Decimal(m.group(0).replace(",", "")).quantize(CENT)
        except InvalidOperation:
            value = Decimal("0")

    sym = _SYMBOL_RE.search(text)
    if sym:
        symbol = sym.group(0)
        return CurrencyAmount(
            amount=value, currency=SYMBOL_TO_CURRENCY.get(symbol, default), symbol=symbol
        )
    return CurrencyAmount(amount=value, currency=default, symbol="$")


def parse_date_robust(text: str | None) -> date | None:
    if not text:
        return None
    s = str(text)
    for pattern, order in _ROBUST_DATE_FORMATS:
        m = pattern.search(s)
        if not m:
            continue
        a, b, c = (int(g) for g in m.groups())
        if order == "ymd":
            year, month, day = a, b, c
        elif order == "mdy":
            month, day, year = a, b, c
        else:
            month, day = a, b
            year = 2000 + c if c < 50 else 1900 + c
        try:
            return date(year, month, day)
        except ValueError:
            return None
    return None


def _amount_text(amount: object) -> str:
    if amount is None or isinstance(amount, bool):
        return ""
    if isinstance(amount, float):
        if not math.isfinite(amount):
            return ""
        return format(amount, "f")
    if isinstance(amount, Decimal):
        return format(amount, "f") if amount.is_finite() else ""
    return str(amount)
