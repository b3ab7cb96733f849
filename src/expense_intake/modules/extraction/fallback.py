from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from expense_intake.core.config import DEFAULT_FALLBACK_AMOUNT_RANGE
from expense_intake.modules.extraction.dates import estimate_date
from expense_intake.modules.extraction.normalize import CENT, UNKNOWN_MERCHANT
from expense_intake.modules.receipts.schemas import Category, DateSource, ExtractedReceipt

FALLBACK_NOTES = "Estimated from filename pattern"


@dataclass(frozen=True)
class MerchantPattern:
    keyword: str
    name: str
    category: Category
    amount_range: tuple[float, float]


# Order matters: the first keyword found in the filename wins.
MERCHANT_PATTERNS: tuple[MerchantPattern, ...] = (
    MerchantPattern("starbucks", "Starbucks", Category.MEALS, (4, 12)),
    MerchantPattern("coffee", "Coffee Shop", Category.MEALS, (3, 8)),
    MerchantPattern("dunkin", "Dunkin", Category.MEALS, (3, 10)),
    MerchantPattern("mcdonald", "McDonald's", Category.MEALS, (5, 15)),
    MerchantPattern("subway", "Subway", Category.MEALS, (8, 15)),
    MerchantPattern("chipotle", "Chipotle", Category.MEALS, (10, 18)),
    MerchantPattern("panera", "Panera Bread", Category.MEALS, (8, 20)),
    MerchantPattern("pizza", "Pizza Place", Category.MEALS, (12, 25)),
    MerchantPattern("restaurant", "Restaurant", Category.MEALS, (15, 50)),
    MerchantPattern("diner", "Diner", Category.MEALS, (8, 25)),
    MerchantPattern("uber", "Uber", Category.TRAVEL, (8, 35)),
    MerchantPattern("lyft", "Lyft", Category.TRAVEL, (8, 35)),
    MerchantPattern("taxi", "Taxi", Category.TRAVEL, (10, 40)),
    MerchantPattern("shell", "Shell", Category.TRAVEL, (25, 80)),
    MerchantPattern("exxon", "ExxonMobil", Category.TRAVEL, (25, 80)),
    MerchantPattern("chevron", "Chevron", Category.TRAVEL, (25, 80)),
    MerchantPattern("bp", "BP", Category.TRAVEL, (25, 80)),
    MerchantPattern("gas", "Gas Station", Category.TRAVEL, (30, 70)),
    MerchantPattern("hotel", "Hotel", Category.TRAVEL, (80, 300)),
    MerchantPattern("motel", "Motel", Category.TRAVEL, (50, 150)),
    MerchantPattern("marriott", "Marriott", Category.TRAVEL, (100, 400)),
    MerchantPattern("hilton", "Hilton", Category.TRAVEL, (100, 400)),
    MerchantPattern("delta", "Delta Air Lines", Category.TRAVEL, (200, 800)),
    MerchantPattern("american", "American Airlines", Category.TRAVEL, (200, 800)),
    MerchantPattern("southwest", "Southwest Airlines", Category.TRAVEL, (150, 600)),
    MerchantPattern("united", "United Airlines", Category.TRAVEL, (200, 800)),
    MerchantPattern("parking", "Parking", Category.TRAVEL, (5, 30)),
    MerchantPattern("office", "Office Depot", Category.SUPPLIES, (15, 100)),
    MerchantPattern("staples", "Staples", Category.SUPPLIES, (15, 100)),
    MerchantPattern("depot", "Office Depot", Category.SUPPLIES, (15, 100)),
    MerchantPattern("amazon", "Amazon", Category.SUPPLIES, (10, 200)),
    MerchantPattern("best buy", "Best Buy", Category.SUPPLIES, (20, 500)),
    MerchantPattern("costco", "Costco", Category.SUPPLIES, (50, 300)),
    MerchantPattern("walmart", "Walmart", Category.SUPPLIES, (10, 150)),
    MerchantPattern("target", "Target", Category.SUPPLIES, (15, 200)),
    MerchantPattern("fedex", "FedEx Office", Category.SUPPLIES, (5, 50)),
    MerchantPattern("ups", "UPS Store", Category.SUPPLIES, (5, 50)),
    MerchantPattern("print", "Print Shop", Category.SUPPLIES, (5, 40)),
)


def match_merchant(filename: str) -> MerchantPattern | None:
    lowered = (filename or "").lower()
    for pattern in MERCHANT_PATTERNS:
        if pattern.keyword in lowered:
            return pattern
    return None


def pattern_fallback(
    filename: str = "",
    *,
    today: date | None = None,
    rng: random.Random | None = None,
    default_range: tuple[float, float] = DEFAULT_FALLBACK_AMOUNT_RANGE,
) -> ExtractedReceipt:
    """
    Build a placeholder receipt from the filename alone.

    The amount is sampled from the merchant's usual range; it is a guess, not a
    reading, and the confidence never exceeds ``medium``.
    """
    rng = rng or random.Random()
    matched = match_merchant(filename)

    lo, hi = matched.amount_range if matched else default_range
    # sub-cent jitter keeps synthesized amounts from repeating exactly
    raw_amount = min(rng.uniform(lo, hi) + rng.uniform(0, 0.01), hi)
    amount = Decimal(str(round(raw_amount, 2))).quantize(CENT)

    estimated = estimate_date(filename, today=today, rng=rng)

    return ExtractedReceipt(
        merchant_name=matched.name if matched else UNKNOWN_MERCHANT,
        amount=amount,
        category=matched.category if matched else Category.OTHER,
        receipt_date=estimated.value,
        confidence=estimated.confidence,
        date_source=DateSource.ESTIMATED,
        extraction_notes=FALLBACK_NOTES,
    )
