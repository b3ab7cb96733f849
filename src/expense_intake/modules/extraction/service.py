from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from collections.abc import Callable
from datetime import date
from urllib.parse import urlparse

import httpx
from sqlalchemy.orm import Session, sessionmaker

from expense_intake.core.config import Settings
from expense_intake.core.db import make_session_factory
from expense_intake.core.logging import (
    bind_log_fields,
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
)
from expense_intake.modules.extraction.ai import VisionExtractor
from expense_intake.modules.extraction.duplicates import DuplicateDetector
from expense_intake.modules.extraction.fallback import pattern_fallback
from expense_intake.modules.extraction.fetch import ImageFetchError, fetch_image_payload
from expense_intake.modules.extraction.normalize import (
    normalize_currency,
    normalize_merchant,
    parse_date_robust,
)
from expense_intake.modules.extraction.validation import ExtractionError
from expense_intake.modules.receipts.schemas import (
    ExtractedReceipt,
    ExtractionMethod,
    NormalizedReceipt,
)

logger = get_logger(__name__)

DEFAULT_NOTES = "Processed successfully"

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_EXPECTED_FAILURES = (ImageFetchError, ExtractionError, TimeoutError)


class ReceiptPipeline:
    """
    Receipt image -> normalized, duplicate-checked, confidence-scored record.

    Extraction problems never escape ``process``: any failure while fetching
    or reading the image falls back to filename heuristics. Only a malformed
    call (missing URL or user) raises.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient,
        duplicates: DuplicateDetector,
        vision: VisionExtractor | None = None,
        rng: random.Random | None = None,
        today: Callable[[], date] = date.today,
    ):
        self._settings = settings
        self._client = client
        self._duplicates = duplicates
        self._vision = vision or VisionExtractor(settings, client=client)
        self._rng = rng or random.Random()
        self._today = today

    async def process(
        self, file_url: str, filename: str | None, user_id: str | int
    ) -> NormalizedReceipt:
        file_url, filename, user_id = _check_request(file_url, filename, user_id)
        settings = self._settings
        today = self._today()
        start = time.monotonic()
        with bind_log_fields(user_id=user_id):
            extracted, method = await self._extract(file_url, filename, today=today)

            merchant = normalize_merchant(extracted.merchant_name)
            money = normalize_currency(
                extracted.amount, extracted.currency or settings.default_currency
            )
            receipt_date = (
                parse_date_robust(extracted.receipt_date.isoformat()) or extracted.receipt_date
            )

            is_duplicate = await self._duplicates.is_duplicate(
                user_id, merchant, money.amount, receipt_date
            )

            score = settings.confidence_score(extracted.confidence.value)
            record = NormalizedReceipt(
                user_id=user_id,
                file_url=file_url,
                filename=filename,
                merchant_name=merchant,
                amount=money.amount,
                currency_code=money.currency,
                currency_symbol=money.symbol,
                receipt_date=receipt_date,
                category=extracted.category,
                confidence=extracted.confidence,
                confidence_score=score,
                needs_review=score < settings.review_threshold,
                is_duplicate=is_duplicate,
                date_source=extracted.date_source,
                extraction_method=method,
                extraction_notes=extracted.extraction_notes or DEFAULT_NOTES,
            )
            log_event(
                logger,
                "receipts.process.finish",
                extraction_method=method.value,
                category=record.category.value,
                confidence=record.confidence.value,
                needs_review=record.needs_review,
                is_duplicate=record.is_duplicate,
                duration_ms=monotonic_ms(start),
            )
            return record

    async def _extract(
        self, file_url: str, filename: str, *, today: date
    ) -> tuple[ExtractedReceipt, ExtractionMethod]:
        try:
            extracted = await asyncio.wait_for(
                self._extract_with_vision(file_url, filename, today=today),
                timeout=self._settings.extraction_deadline_seconds,
            )
            return extracted, ExtractionMethod.AI_VISION
        except _EXPECTED_FAILURES as e:
            log_event(
                logger,
                "receipts.extraction.fallback",
                level=logging.WARNING,
                reason=e.__class__.__name__,
                error=str(e) or None,
                filename=filename,
            )
        except Exception as e:
            log_exception(
                logger,
                "receipts.extraction.fallback",
                reason=e.__class__.__name__,
                filename=filename,
            )
        fallback = pattern_fallback(
            filename,
            today=today,
            rng=self._rng,
            default_range=self._settings.fallback_amount_range,
        )
        return fallback, ExtractionMethod.PATTERN_FALLBACK

    async def _extract_with_vision(
        self, file_url: str, filename: str, *, today: date
    ) -> ExtractedReceipt:
        payload = await fetch_image_payload(
            file_url,
            client=self._client,
            timeout=float(self._settings.fetch_timeout_seconds or 15.0),
        )
        return await self._vision.extract(payload, filename, today=today, rng=self._rng)


async def process_receipt(
    file_url: str,
    filename: str | None,
    user_id: str | int,
    *,
    settings: Settings,
    session_factory: sessionmaker[Session] | None = None,
) -> NormalizedReceipt:
    session_factory = session_factory or make_session_factory(settings)
    duplicates = DuplicateDetector(session_factory, window_days=settings.duplicate_window_days)
    async with httpx.AsyncClient() as client:
        pipeline = ReceiptPipeline(settings, client=client, duplicates=duplicates)
        return await pipeline.process(file_url, filename, user_id)


def _check_request(
    file_url: str, filename: str | None, user_id: str | int
) -> tuple[str, str, str]:
    if file_url is None or not isinstance(file_url, str):
        raise ValueError("file_url is required")
    clean_url = _CONTROL_CHARS_RE.sub("", file_url).strip()
    parsed = urlparse(clean_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Invalid file URL provided")

    if user_id is None or isinstance(user_id, bool):
        raise ValueError("user_id is required")
    clean_user = str(user_id).strip()
    if not clean_user:
        raise ValueError("user_id is required")

    clean_filename = _CONTROL_CHARS_RE.sub("", filename or "").strip()[:255]
    return clean_url, clean_filename, clean_user
