from __future__ import annotations

# Display symbols the receipt flow recognises, in detection order.
SYMBOL_TO_CURRENCY: dict[str, str] = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
}

_KNOWN_CURRENCIES: frozenset[str] = frozenset(
    {
        "AED", "AUD", "BRL", "CAD", "CHF", "CNY", "CZK", "DKK", "EUR", "GBP",
        "HKD", "HUF", "IDR", "ILS", "INR", "JPY", "KRW", "MXN", "MYR", "NOK",
        "NZD", "PHP", "PLN", "SAR", "SEK", "SGD", "THB", "TRY", "TWD", "USD",
        "VND", "ZAR",
    }
)


def normalize_currency(raw: str | None) -> str | None:
    if not raw:
        return None
    code = str(raw).strip().upper()
    if code in SYMBOL_TO_CURRENCY:
        return SYMBOL_TO_CURRENCY[code]
    if code in _KNOWN_CURRENCIES:
        return code
    return None
