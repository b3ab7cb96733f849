from __future__ import annotations

import asyncio
import json
import random
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fakes import IMAGE_URL, fixed_today, make_client

from expense_intake.modules.extraction import service as extraction_service
from expense_intake.modules.extraction.dates import plausibility_window
from expense_intake.modules.extraction.duplicates import DuplicateDetector
from expense_intake.modules.extraction.service import ReceiptPipeline
from expense_intake.modules.receipts.models import Receipt
from expense_intake.modules.receipts.schemas import (
    Category,
    Confidence,
    DateSource,
    ExtractionMethod,
)

TODAY = date.today()


def _process(
    settings,
    session_factory,
    client,
    *,
    filename="receipt.jpg",
    user_id="user-1",
    file_url=IMAGE_URL,
    today=TODAY,
    seed=0,
):
    async def run():
        async with client:
            pipeline = ReceiptPipeline(
                settings,
                client=client,
                duplicates=DuplicateDetector(session_factory),
                rng=random.Random(seed),
                today=fixed_today(today),
            )
            return await pipeline.process(file_url, filename, user_id)

    return asyncio.run(run())


def _reply(**fields) -> str:
    base = {
        "merchant_name": "STARBUCKS #1234 SEATTLE",
        "amount": 8.45,
        "category": "Meals",
        "receipt_date": (TODAY - timedelta(days=3)).isoformat(),
        "confidence": "high",
        "extraction_notes": "Paper receipt",
    }
    base.update(fields)
    return json.dumps(base)


def test_vision_path_produces_trusted_record(settings, session_factory):
    record = _process(settings, session_factory, make_client(reply=_reply()))

    assert record.extraction_method == ExtractionMethod.AI_VISION
    assert record.merchant_name == "Starbucks"
    assert record.amount == Decimal("8.45")
    assert record.currency_code == "USD"
    assert record.currency_symbol == "$"
    assert record.receipt_date == TODAY - timedelta(days=3)
    assert record.category == Category.MEALS
    assert record.confidence == Confidence.HIGH
    assert record.confidence_score == 0.9
    assert record.needs_review is False
    assert record.is_duplicate is False
    assert record.date_source == DateSource.AI_VISION
    assert record.extraction_notes == "Paper receipt"


def test_payload_shape_for_calling_layer(settings, session_factory):
    record = _process(settings, session_factory, make_client(reply=_reply(amount="€8.45")))
    payload = record.to_payload()
    assert payload["amount"] == 8.45
    assert payload["currency"] == "EUR"
    assert payload["currency_symbol"] == "$"
    assert payload["confidence"] == 0.9
    assert payload["needs_review"] is False
    assert payload["receipt_date"] == (TODAY - timedelta(days=3)).isoformat()


def test_out_of_window_date_is_regenerated_and_flagged(settings, session_factory):
    reply = (
        'Here is the data: {"merchant_name":"UBER","amount":"12.50","category":"Travel",'
        '"receipt_date":"2099-01-01","confidence":"high"}'
    )
    record = _process(settings, session_factory, make_client(reply=reply), filename="ride.png")

    lo, hi = plausibility_window(TODAY)
    assert record.merchant_name == "Uber"
    assert record.amount == 12.5
    assert record.category == Category.TRAVEL
    assert lo <= record.receipt_date <= hi
    assert record.confidence_score == 0.5
    assert record.needs_review is True
    assert record.extraction_notes == "Extracted using AI vision"


def test_unknown_category_is_coerced(settings, session_factory):
    record = _process(settings, session_factory, make_client(reply=_reply(category="Gadgets")))
    assert record.category == Category.OTHER


@pytest.mark.parametrize(
    "client_kwargs",
    [
        {"image_status": 404},
        {"image_type": "application/pdf"},
        {"chat_status": 503, "chat_json": {"error": "overloaded"}},
        {"reply": "I cannot read this image."},
    ],
)
def test_any_extraction_failure_falls_back_to_filename(settings, session_factory, client_kwargs):
    filename = f"starbucks_receipt_{(TODAY - timedelta(days=5)).isoformat()}.jpg"
    record = _process(
        settings, session_factory, make_client(**client_kwargs), filename=filename
    )

    assert record.extraction_method == ExtractionMethod.PATTERN_FALLBACK
    assert record.merchant_name == "Starbucks"
    assert record.category == Category.MEALS
    assert record.receipt_date == TODAY - timedelta(days=5)
    assert record.confidence == Confidence.MEDIUM
    assert record.confidence_score == 0.7
    assert record.needs_review is True
    assert record.date_source == DateSource.ESTIMATED
    assert Decimal("4") <= record.amount <= Decimal("12")


def test_stale_filename_date_falls_back_to_recent_random_date(settings, session_factory):
    record = _process(
        settings,
        session_factory,
        make_client(image_status=500),
        filename="starbucks_receipt_2024-03-15.jpg",
        today=date(2026, 10, 19),
    )
    assert record.merchant_name == "Starbucks"
    assert record.confidence == Confidence.LOW
    assert date(2026, 10, 6) <= record.receipt_date <= date(2026, 10, 19)


def test_unexpected_errors_also_fall_back(settings, session_factory, monkeypatch):
    async def _boom(*args, **kwargs):
        raise KeyError("surprise")

    monkeypatch.setattr(extraction_service, "fetch_image_payload", _boom)
    record = _process(settings, session_factory, make_client(reply=_reply()))
    assert record.extraction_method == ExtractionMethod.PATTERN_FALLBACK
    assert record.merchant_name == "Unknown Merchant"
    assert record.category == Category.OTHER


def test_stuck_extraction_hits_deadline_and_falls_back(settings, session_factory, monkeypatch):
    async def _hang(*args, **kwargs):
        await asyncio.sleep(10)

    monkeypatch.setattr(extraction_service, "fetch_image_payload", _hang)
    settings = settings.model_copy(update={"extraction_deadline_seconds": 0.05})
    record = _process(settings, session_factory, make_client(reply=_reply()), filename="uber.png")
    assert record.extraction_method == ExtractionMethod.PATTERN_FALLBACK
    assert record.merchant_name == "Uber"


def test_duplicate_is_flagged_not_rejected(settings, session_factory):
    with session_factory() as session:
        session.add(
            Receipt(
                user_id="user-1",
                merchant_name="Starbucks",
                amount=Decimal("8.45"),
                currency="USD",
                receipt_date=TODAY - timedelta(days=3),
                category="Meals",
            )
        )
        session.commit()

    record = _process(settings, session_factory, make_client(reply=_reply()))
    assert record.is_duplicate is True
    assert record.merchant_name == "Starbucks"

    other_user = _process(
        settings, session_factory, make_client(reply=_reply()), user_id="user-2"
    )
    assert other_user.is_duplicate is False


def test_every_output_satisfies_record_invariants(settings, session_factory):
    replies = [
        _reply(),
        _reply(confidence="low"),
        _reply(confidence="medium", category="Supplies"),
        _reply(receipt_date="13/45/2025", category=None),
        _reply(amount="-1", merchant_name=None),
        '{"merchant_name": 7}',
        "no json here",
        "",
    ]
    lo, hi = plausibility_window(TODAY)
    for seed, reply in enumerate(replies):
        record = _process(settings, session_factory, make_client(reply=reply), seed=seed)
        assert lo <= record.receipt_date <= hi
        assert record.category in set(Category)
        assert record.confidence_score in {0.9, 0.7, 0.5}
        assert record.needs_review == (record.confidence_score < 0.72)
        assert record.amount >= 0


@pytest.mark.parametrize(
    ("file_url", "user_id"),
    [
        (None, "user-1"),
        ("", "user-1"),
        ("ftp://files.example.com/a.png", "user-1"),
        ("not a url", "user-1"),
        (IMAGE_URL, None),
        (IMAGE_URL, "   "),
    ],
)
def test_missing_required_input_raises(settings, session_factory, file_url, user_id):
    with pytest.raises(ValueError):
        _process(
            settings,
            session_factory,
            make_client(reply=_reply()),
            file_url=file_url,
            user_id=user_id,
        )


def test_missing_filename_is_allowed(settings, session_factory):
    record = _process(settings, session_factory, make_client(reply=_reply()), filename=None)
    assert record.filename == ""
    assert record.merchant_name == "Starbucks"


def test_process_receipt_entry_point_builds_its_own_collaborators(
    settings, session_factory, monkeypatch
):
    reply = _reply(merchant_name="Lyft", category="Travel", amount=23.18)
    client = make_client(reply=reply)
    monkeypatch.setattr(extraction_service.httpx, "AsyncClient", lambda **kwargs: client)
    record = asyncio.run(
        extraction_service.process_receipt(
            IMAGE_URL, "lyft.png", 42, settings=settings, session_factory=session_factory
        )
    )
    assert record.user_id == "42"
    assert record.merchant_name == "Lyft"
    assert record.amount == Decimal("23.18")
