"""
Type converters — monetary value normalization for provider payloads.
"""
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert a provider amount to Decimal, returning 0 if missing or invalid.

    Accepts numbers and strings such as "-2.50", "1,234.00" or "$5".
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, (int, float)):
        value = str(value)
    try:
        cleaned = str(value).replace(",", "").replace("$", "").strip()
        if not cleaned:
            return ZERO
        parsed = Decimal(cleaned)
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    return parsed if parsed.is_finite() else ZERO


def to_money(value: Decimal) -> float:
    """Round a Decimal amount to cents for storage."""
    return float(value.quantize(CENT))

