"""Utility functions for the marketplace."""

from .helpers import (
    days_between,
    generate_reference,
    round_money,
    to_naive_utc,
    truncate_text,
    utcnow,
)

__all__ = [
    "utcnow",
    "round_money",
    "generate_reference",
    "days_between",
    "truncate_text",
    "to_naive_utc",
]
