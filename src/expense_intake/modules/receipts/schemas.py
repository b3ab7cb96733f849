from __future__ import annotations

import enum
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class Category(str, enum.Enum):
    MEALS = "Meals"
    TRAVEL = "Travel"
    SUPPLIES = "Supplies"
    OTHER = "Other"


class Confidence(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DateSource(str, enum.Enum):
    AI_VISION = "ai_vision"
    ESTIMATED = "estimated"


class ExtractionMethod(str, enum.Enum):
    AI_VISION = "ai_vision"
    PATTERN_FALLBACK = "pattern_fallback"


class ExtractedReceipt(BaseModel):
    merchant_name: str
    amount: Decimal = Field(ge=0)
    category: Category = Category.OTHER
    receipt_date: date
    confidence: Confidence = Confidence.MEDIUM
    date_source: DateSource
    extraction_notes: str | None = None
    currency: str | None = None


class NormalizedReceipt(BaseModel):
    user_id: str
    file_url: str
    filename: str

    merchant_name: str
    amount: Decimal = Field(ge=0)
    currency_code: str
    currency_symbol: str
    receipt_date: date
    category: Category

    confidence: Confidence
    confidence_score: float
    needs_review: bool
    is_duplicate: bool

    date_source: DateSource
    extraction_method: ExtractionMethod
    extraction_notes: str

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe body handed back to the calling layer."""
        return {
            "merchant_name": self.merchant_name,
            "amount": float(self.amount),
            "currency": self.currency_code,
            "currency_symbol": self.currency_symbol,
            "receipt_date": self.receipt_date.isoformat(),
            "category": self.category.value,
            "confidence": self.confidence_score,
            "confidence_label": self.confidence.value,
            "needs_review": self.needs_review,
            "is_duplicate": self.is_duplicate,
            "date_source": self.date_source.value,
            "extraction_method": self.extraction_method.value,
            "extraction_notes": self.extraction_notes,
        }
