"""
Money helpers.

All amounts are Decimal yuan rounded half-up to the fen. The payment
gateway speaks integer fen (`total_fee`, `refund_fee`); the database
stores the canonical two-decimal string.
"""
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

Number = Union[str, int, float, Decimal, None]

FEN = Decimal("0.01")
FEN_PER_YUAN = Decimal(100)


def to_decimal(value: Number) -> Decimal:
    """
    Coerce a stored or user-supplied number to Decimal.

    Floats go through `str` so 0.1 stays 0.1. None and unparsable input
    become zero; callers that must reject bad input validate first.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(FEN, rounding=ROUND_HALF_UP)


def to_minor_units(value: Number) -> int:
    """Yuan to integer fen for the gateway, e.g. 93.5 -> 9350."""
    return int((to_decimal(value) * FEN_PER_YUAN).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(minor: Union[int, str]) -> Decimal:
    """Integer fen from the gateway back to yuan, e.g. "9350" -> 93.50."""
    return round_money(to_decimal(minor) / FEN_PER_YUAN)


def floor_int(value: Number) -> int:
    return int(to_decimal(value).to_integral_value(rounding=ROUND_FLOOR))


def add(a: Number, b: Number) -> Decimal:
    return to_decimal(a) + to_decimal(b)


def subtract(a: Number, b: Number) -> Decimal:
    return to_decimal(a) - to_decimal(b)


def multiply(value: Number, factor: Number) -> Decimal:
    return to_decimal(value) * to_decimal(factor)


def money_str(value: Number) -> str:
    """Canonical database form, e.g. "93.00"."""
    return str(round_money(value))
