"""
Core Utilities

Shared helpers used across the pricing engine.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Coerce a price-like value into a Decimal.

    Accepts ints, floats, Decimals and strings such as "$1,249.99" or "12.50 EUR".
    Returns None for anything that does not contain a number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    cleaned = "".join(ch for ch in str(value) if ch.isdigit() or ch in ".-")
    if not cleaned or cleaned in (".", "-"):
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary amount to cents."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def cents_to_dollars(value: Any) -> Optional[Decimal]:
    """Convert an integer cent amount (PriceCharting format) to dollars."""
    cents = to_decimal(value)
    if cents is None or cents <= 0:
        return None
    return quantize_money(cents / Decimal(100))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes read back from the database.

    SQLite returns timezone-naive values even for DateTime(timezone=True).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_DATE_FORMATS = ("%b %d, %Y", "%d %b %Y", "%Y-%m-%d", "%m/%d/%Y")


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Best-effort parse of a source timestamp into an aware UTC datetime.

    Handles ISO-8601 (with or without 'Z') and the short date formats used by
    marketplace listings ("Sold Oct 5, 2024"). Returns None when unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)

    text = str(value).strip()
    if text.lower().startswith("sold"):
        text = text[4:].strip()
    if not text:
        return None

    try:
        return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None
