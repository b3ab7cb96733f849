from __future__ import annotations

import json
import math
import random
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from expense_intake.core.currencies import SYMBOL_TO_CURRENCY, normalize_currency
from expense_intake.modules.extraction.dates import reconcile_date
from expense_intake.modules.extraction.normalize import CENT, UNKNOWN_MERCHANT
from expense_intake.modules.extraction.normalize import (
    normalize_currency as split_amount_currency,
)
from expense_intake.modules.receipts.schemas import (
    Category,
    Confidence,
    DateSource,
    ExtractedReceipt,
)

DEFAULT_VISION_NOTES = "Extracted using AI vision"

_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


class ExtractionError(RuntimeError):
    pass


def parse_vision_reply(
    content: str | None,
    filename: str = "",
    *,
    today: date | None = None,
    rng: random.Random | None = None,
) -> ExtractedReceipt:
    """
    Turn a free-form model reply into an ``ExtractedReceipt``.

    The reply is untrusted: only the JSON object is read, every field is coerced
    into its closed set, and the date goes through ``reconcile_date``. Only a
    reply with no usable JSON object raises ``ExtractionError``.
    """
    obj = parse_json_object(content)
    if not isinstance(obj, dict):
        raise ExtractionError("Invalid JSON response from vision API")
    return sanitize_receipt_fields(obj, filename, today=today, rng=rng)


def sanitize_receipt_fields(
    obj: dict[str, Any],
    filename: str = "",
    *,
    today: date | None = None,
    rng: random.Random | None = None,
) -> ExtractedReceipt:
    amount, symbol_currency = _coerce_amount(obj.get("amount"))
    currency = None
    raw_currency = obj.get("currency")
    if isinstance(raw_currency, str):
        currency = normalize_currency(raw_currency)
    currency = currency or symbol_currency

    reconciled = reconcile_date(obj.get("receipt_date"), filename, today=today, rng=rng)
    confidence = _coerce_enum(obj.get("confidence"), Confidence, Confidence.MEDIUM)
    if reconciled.confidence != Confidence.HIGH:
        # a regenerated date can't be trusted more than the estimate behind it
        confidence = min(confidence, reconciled.confidence, key=_CONFIDENCE_RANK.__getitem__)

    notes = obj.get("extraction_notes")
    notes = notes.strip()[:500] if isinstance(notes, str) else ""

    return ExtractedReceipt(
        merchant_name=_coerce_merchant(obj.get("merchant_name")),
        amount=amount,
        category=_coerce_enum(obj.get("category"), Category, Category.OTHER),
        receipt_date=reconciled.value,
        confidence=confidence,
        date_source=DateSource.AI_VISION,
        extraction_notes=notes or DEFAULT_VISION_NOTES,
        currency=currency,
    )


def parse_json_object(content: str | None) -> Any:
    c = (content or "").strip()
    if not c:
        return None
    candidate = _first_balanced_object(c)
    if candidate is not None:
        try:
            return json.loads(candidate)
        except ValueError:
            pass
    try:
        return json.loads(c)
    except ValueError:
        return None


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def _coerce_merchant(raw: object) -> str:
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        return UNKNOWN_MERCHANT
    s = str(raw).strip()
    return s[:200] or UNKNOWN_MERCHANT


def _coerce_amount(raw: object) -> tuple[Decimal, str | None]:
    zero = Decimal("0.00")
    if isinstance(raw, bool) or raw is None:
        return zero, None
    if isinstance(raw, (int, float)):
        if not math.isfinite(raw) or raw < 0:
            return zero, None
        try:
            return Decimal(str(raw)).quantize(CENT), None
        except InvalidOperation:
            return zero, None
    if isinstance(raw, str):
        if re.match(r"\s*-", raw):
            return zero, None
        split = split_amount_currency(raw)
        detected = split.currency if any(sym in raw for sym in SYMBOL_TO_CURRENCY) else None
        return split.amount, detected
    return zero, None


def _coerce_enum(raw: object, enum_cls, default):
    if not isinstance(raw, str):
        return default
    wanted = raw.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member
    return default
