"""Currency helpers. Amounts are Decimal end to end and rounded once, at the edge."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Optional[Number]) -> Decimal:
    """Coerce a possibly-missing amount to Decimal (missing -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value instead of binary noise
    return Decimal(str(value))


def round_money(value: Number) -> Decimal:
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def sum_amounts(values: Iterable[Optional[Number]]) -> Decimal:
    """Sum without intermediate rounding."""
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


def safe_divide(numerator: Decimal, denominator: Decimal) -> Optional[Decimal]:
    """Divide, returning None instead of raising on a zero denominator."""
    if denominator == 0:
        return None
    return numerator / denominator
