"""Decimal helpers for amounts. Round once, at output boundaries."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Coerce a stored or submitted number to Decimal (None -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Optional[Number]) -> Decimal:
    """Round to 2 decimals, half-up."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def money_float(value: Optional[Number]) -> float:
    return float(money(value))


def percentage(part: Number, whole: Number) -> Decimal:
    """``part / whole * 100``, or 0 when ``whole`` is not positive."""
    whole = to_decimal(whole)
    if whole <= 0:
        return ZERO
    return to_decimal(part) / whole * 100
