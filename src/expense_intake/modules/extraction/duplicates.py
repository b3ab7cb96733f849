from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from expense_intake.core.logging import get_logger, log_exception
from expense_intake.modules.receipts.models import Receipt

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 90


class DuplicateDetector:
    """
    Advisory duplicate lookup against stored receipts.

    A lookup failure reads as "not a duplicate"; the flag never blocks a
    submission.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ):
        self._session_factory = session_factory
        self._window_days = window_days

    async def is_duplicate(
        self,
        user_id: str,
        merchant: str,
        amount: Decimal,
        receipt_date: date,
        *,
        now: datetime | None = None,
    ) -> bool:
        try:
            return await asyncio.to_thread(
                self._lookup, user_id, merchant, amount, receipt_date, now or datetime.now(UTC)
            )
        except Exception:
            log_exception(
                logger,
                "receipts.duplicate_check.failure",
                merchant=merchant,
                receipt_date=receipt_date.isoformat(),
            )
            return False

    def _lookup(
        self,
        user_id: str,
        merchant: str,
        amount: Decimal,
        receipt_date: date,
        now: datetime,
    ) -> bool:
        cutoff = now - timedelta(days=self._window_days)
        with self._session_factory() as session:
            existing = session.scalar(
                select(Receipt.id)
                .where(
                    Receipt.user_id == user_id,
                    Receipt.merchant_name == merchant,
                    Receipt.amount == amount,
                    Receipt.receipt_date == receipt_date,
                    Receipt.created_at > cutoff,
                )
                .limit(1)
            )
        return existing is not None
