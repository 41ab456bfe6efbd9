"""Shared services used by the cart core."""
from .money import (
    clamp_non_negative,
    extract_inclusive_tax,
    from_cents,
    percent_of,
    round_half_up,
    to_cents,
    to_decimal,
)

__all__ = [
    "clamp_non_negative",
    "extract_inclusive_tax",
    "from_cents",
    "percent_of",
    "round_half_up",
    "to_cents",
    "to_decimal",
]
