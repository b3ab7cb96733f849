from __future__ import annotations

import random
import time
from datetime import date
from typing import Any

import httpx

from expense_intake.core.config import Settings
from expense_intake.core.logging import get_logger, log_event, monotonic_ms
from expense_intake.modules.extraction.fetch import ImagePayload
from expense_intake.modules.extraction.validation import ExtractionError, parse_vision_reply
from expense_intake.modules.receipts.schemas import ExtractedReceipt

logger = get_logger(__name__)

SYSTEM_PROMPT = """\
You are an expert receipt OCR system. Analyze ANY type of receipt or payment confirmation \
and extract structured data with high accuracy.

RECEIPT TYPES TO HANDLE:
- Traditional paper receipts (restaurants, stores, gas stations)
- Mobile app screenshots (Uber, Lyft, DoorDash, etc.)
- Digital payment confirmations
- Email receipts
- Online purchase confirmations
- Bank/card transaction screenshots

EXTRACTION PRIORITIES:

1. MERCHANT NAME: Look for the business name ANYWHERE in the image
   - Check app names, logos, company names in headers
   - Look for brand names in prominent text
   - Examples: "Lyft", "Uber", "Starbucks", "Amazon", "McDonald's"
   - If it's a ride-sharing app (Uber/Lyft), use that as the merchant name
   - If it's a food delivery app, look for the restaurant name AND the delivery service
   - Remove store numbers, locations, and extra text

2. TOTAL AMOUNT: Find the final amount paid
   - Look for "Total", "Amount", "Charged", "Paid", "Final Total"
   - Prefer the final charged total over subtotals
   - Extract the numeric value with decimal (include cents)
   - For ride-sharing: look for the final fare amount
   - For food delivery: use the total after taxes and fees

3. TRANSACTION DATE: Find the actual transaction/purchase date
   - Look for dates in various formats: "Sep 29, 2025", "9/29/25", "2025-09-29"
   - Convert to YYYY-MM-DD format
   - If multiple dates, use the transaction date (not print/screenshot date)

4. CATEGORY: Classify the expense type based on the merchant/service
   - Meals: Restaurants, cafes, food delivery (DoorDash, UberEats), grocery stores
   - Travel: Uber, Lyft, taxis, gas stations, hotels, airlines, parking, car rental
   - Supplies: Office supplies, Amazon, hardware stores, electronics, software
   - Other: Everything else

IMPORTANT NOTES:
- Be very thorough in scanning the entire image for merchant information
- Digital receipts often have the merchant name as the main app/service name
- Look at logos, headers, company branding, and prominent text

Return ONLY valid JSON in this exact format - no additional text or formatting:
{
  "merchant_name": "Exact merchant name",
  "amount": 28.98,
  "category": "Travel",
  "receipt_date": "2025-09-29",
  "confidence": "high",
  "extraction_notes": "Brief description of what was found"
}"""


def build_vision_messages(
    payload: ImagePayload, filename: str, *, today: date
) -> list[dict[str, Any]]:
    user_text = (
        "Analyze this receipt/payment confirmation image carefully and extract all the "
        "key information.\n\n"
        f"Context: {filename or 'receipt'}\n"
        f"Today's date: {today.isoformat()}\n\n"
        "Look for:\n"
        "- Company/app name, logos, or branding (this is often the merchant name)\n"
        "- The total amount charged or paid\n"
        "- The transaction date\n"
        "- What type of business/service this is for categorization\n\n"
        "Return ONLY the JSON response with no additional formatting or text:"
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": user_text},
                {"type": "image_url", "image_url": {"url": payload.data_url}},
            ],
        },
    ]


class VisionExtractor:
    """Single-shot receipt extraction against an OpenAI-compatible chat endpoint."""

    def __init__(self, settings: Settings, *, client: httpx.AsyncClient):
        self._settings = settings
        self._client = client

    async def extract(
        self,
        payload: ImagePayload,
        filename: str,
        *,
        today: date | None = None,
        rng: random.Random | None = None,
    ) -> ExtractedReceipt:
        today = today or date.today()
        content = await self._complete(build_vision_messages(payload, filename, today=today))
        return parse_vision_reply(content, filename, today=today, rng=rng)

    async def _complete(self, messages: list[dict[str, Any]]) -> str:
        settings = self._settings
        if not settings.openai_api_key:
            raise ExtractionError("OpenAI API key is not configured")

        request_body = {
            "model": settings.openai_model,
            "messages": messages,
            "max_tokens": settings.vision_max_tokens,
            "temperature": settings.vision_temperature,
        }
        headers = {
            "Authorization": f"Bearer {settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        url = settings.openai_base_url.rstrip("/") + "/chat/completions"

        start = time.monotonic()
        try:
            resp = await self._client.post(
                url,
                headers=headers,
                json=request_body,
                timeout=float(settings.vision_timeout_seconds or 30.0),
                follow_redirects=True,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            self._log_key_usage(success=False, start=start, error=e.__class__.__name__)
            raise ExtractionError(f"Vision API request failed: {e.__class__.__name__}") from e
        self._log_key_usage(success=True, start=start)

        try:
            raw = resp.json()
            msg = raw["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExtractionError("Invalid vision API response format") from e

        if not isinstance(msg, dict):
            raise ExtractionError("Invalid vision API response format")
        if msg.get("refusal"):
            raise ExtractionError("Vision API refused the request")
        content = msg.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ExtractionError("No content in OpenAI response")
        return content

    def _log_key_usage(self, *, success: bool, start: float, error: str | None = None) -> None:
        log_event(
            logger,
            "ai.vision.call.success" if success else "ai.vision.call.failure",
            key_type="openai",
            operation="vision_analysis",
            model=self._settings.openai_model,
            duration_ms=monotonic_ms(start),
            error=error,
        )
