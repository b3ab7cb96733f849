from __future__ import annotations

import random
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from expense_intake.modules.receipts.schemas import Confidence

# Receipts older than this are never trusted, regardless of what the filename says.
MIN_FILENAME_YEAR = 2020
RECENT_DAYS = 14

_NATIVE_FORMATS = (
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
)

_MONTH_NAME_RE = re.compile(r"\b([A-Za-z]{3,9})\.?\s+([0-9]{1,2}),?\s+([0-9]{4})\b")
_US_DATE_RES = (
    re.compile(r"([0-9]{1,2})/([0-9]{1,2})/([0-9]{4})"),
    re.compile(r"([0-9]{1,2})-([0-9]{1,2})-([0-9]{4})"),
)

_FILENAME_YMD_RE = re.compile(r"([0-9]{4})[_-]([0-9]{1,2})[_-]([0-9]{1,2})")
_FILENAME_MDY_RE = re.compile(r"([0-9]{1,2})[_-]([0-9]{1,2})[_-]([0-9]{4})")


@dataclass(frozen=True)
class DateResult:
    value: date
    confidence: Confidence


def plausibility_window(today: date) -> tuple[date, date]:
    try:
        one_year_ago = today.replace(year=today.year - 1)
    except ValueError:
        # Feb 29
        one_year_ago = today.replace(year=today.year - 1, day=28)
    return one_year_ago, today + timedelta(days=1)


def is_plausible(d: date, *, today: date) -> bool:
    lo, hi = plausibility_window(today)
    return lo <= d <= hi


def reconcile_date(
    raw: object,
    filename: str = "",
    *,
    today: date | None = None,
    rng: random.Random | None = None,
) -> DateResult:
    """
    Validate a candidate receipt date against the plausibility window.

    A date that parses and falls inside ``[one_year_ago, tomorrow]`` is trusted
    (``high``). Anything else is discarded and replaced by ``estimate_date``.
    """
    today = today or date.today()
    parsed = _parse_candidate(raw)
    if parsed is not None and is_plausible(parsed, today=today):
        return DateResult(value=parsed, confidence=Confidence.HIGH)
    return estimate_date(filename, today=today, rng=rng)


def estimate_date(
    filename: str = "",
    *,
    today: date | None = None,
    rng: random.Random | None = None,
) -> DateResult:
    today = today or date.today()
    name = filename or ""

    m = _FILENAME_YMD_RE.search(name)
    if m:
        d = _filename_date(int(m.group(1)), int(m.group(2)), int(m.group(3)), today=today)
        if d:
            return DateResult(value=d, confidence=Confidence.MEDIUM)

    m = _FILENAME_MDY_RE.search(name)
    if m:
        d = _filename_date(int(m.group(3)), int(m.group(1)), int(m.group(2)), today=today)
        if d:
            return DateResult(value=d, confidence=Confidence.MEDIUM)

    days_ago = (rng or random).randint(0, RECENT_DAYS - 1)
    return DateResult(value=today - timedelta(days=days_ago), confidence=Confidence.LOW)


def _filename_date(year: int, month: int, day: int, *, today: date) -> date | None:
    if not (MIN_FILENAME_YEAR <= year <= today.year and 1 <= month <= 12 and 1 <= day <= 31):
        return None
    try:
        d = date(year, month, day)
    except ValueError:
        return None
    return d if is_plausible(d, today=today) else None


def _parse_candidate(raw: object) -> date | None:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if not s:
        return None
    return _parse_native(s) or _parse_us_numeric(s)


def _parse_native(s: str) -> date | None:
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _NATIVE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    # "Sep 29, 2025 8:23 PM"
    m = _MONTH_NAME_RE.search(s)
    if m:
        month, day, year = m.groups()
        for fmt in ("%b %d %Y", "%B %d %Y"):
            try:
                return datetime.strptime(f"{month} {day} {year}", fmt).date()
            except ValueError:
                continue
    return None


def _parse_us_numeric(s: str) -> date | None:
    for pattern in _US_DATE_RES:
        m = pattern.search(s)
        if not m:
            continue
        month, day, year = (int(g) for g in m.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None
    return None
