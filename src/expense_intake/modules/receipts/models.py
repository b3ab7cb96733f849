from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Float, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expense_intake.core.models import Base, Timestamped, UUIDPrimaryKey


class Receipt(UUIDPrimaryKey, Timestamped, Base):
    """Stored receipt row. Written by the calling layer; the pipeline only reads it."""

    __tablename__ = "receipts_receipt"

    user_id: Mapped[str] = mapped_column(String(64), index=True)
    merchant_name: Mapped[str] = mapped_column(String(200), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    receipt_date: Mapped[date] = mapped_column(Date, index=True)
    category: Mapped[str] = mapped_column(String(20), default="Other")

    confidence_score: Mapped[float] = mapped_column(Float, default=0.5)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=True)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
