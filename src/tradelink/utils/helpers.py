"""Helper utility functions."""

import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_money(amount: float | int | Decimal) -> float:
    """Round a monetary amount half-up to cents."""
    return float(Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP))


def generate_reference(prefix: str, when: datetime | None = None) -> str:
    """Build a human-readable reference such as ``ORD-20250101-1a2b3c``."""
    when = when or utcnow()
    return f"{prefix}-{when:%Y%m%d}-{secrets.token_hex(3)}"


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from ``earlier`` to ``later`` (floored)."""
    return int((later - earlier).total_seconds() // 86400)


def truncate_text(text: str, max_length: int = 100) -> str:
    """Truncate text to max length with ellipsis."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalise an incoming datetime to naive UTC; naive values are taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
