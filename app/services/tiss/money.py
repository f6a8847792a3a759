"""
Monetary helpers
All TISS amounts are Decimals with two places, rounded half-up
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Any]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)


def format_money(value: Any) -> str:
    """Wire format used in TISS XML ('150.00')"""
    return f"{to_money(value):.2f}"
