"""
Money Utilities - integer minor-unit arithmetic.

All cart amounts are ints in minor currency units (cents). Anything that
involves a ratio goes through Decimal and is rounded half-up back to an int.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

Number = Union[str, int, float, Decimal]

INTEGER_PRECISION = Decimal("1")


def to_decimal(value: Union[Number, None]) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        if isinstance(value, float):
            # Via str to keep 19.99 from becoming 19.989999...
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_half_up(value: Number) -> int:
    """Round to a whole minor unit, halves away from zero."""
    return int(to_decimal(value).quantize(INTEGER_PRECISION, rounding=ROUND_HALF_UP))


def to_cents(value: Number) -> int:
    """
    Convert a major-unit amount to minor units.

    Args:
        value: Amount in major units (e.g., 100.50)

    Returns:
        Amount in minor units (e.g., 10050)
    """
    return round_half_up(to_decimal(value) * 100)


def from_cents(cents: int) -> Decimal:
    """Convert minor units back to a major-unit Decimal (10050 -> 100.50)."""
    return Decimal(cents) / Decimal(100)


def percent_of(base: int, rate: Number) -> int:
    """Half-up rounded `rate` percent of `base` minor units."""
    return round_half_up(Decimal(base) * to_decimal(rate) / Decimal(100))


def extract_inclusive_tax(gross: int, rate: Number) -> int:
    """
    Tax already embedded in a gross amount.

    gross - round(gross * 100 / (100 + rate)), so that
    net + extracted == gross holds exactly.
    """
    net = round_half_up(Decimal(gross) * Decimal(100) / (Decimal(100) + to_decimal(rate)))
    return gross - net


def clamp_non_negative(value: int) -> int:
    """Money never drops below zero inside a calculation."""
    return value if value > 0 else 0
