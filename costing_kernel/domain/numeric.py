"""
Numeric helpers shared by the allocation stages.

Pure Decimal arithmetic.  Every division in the pipeline goes through
``safe_divide`` so a zero denominator yields zero instead of raising.
"""

from collections.abc import Iterable
from decimal import Decimal

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

# Allowed deviation of an account's mapping ratios from 1.0
DEFAULT_RATIO_TOLERANCE = Decimal("0.001")

# 52 weeks x 40 hours: divisor from annual salary to hourly cost
DEFAULT_ANNUAL_WORK_HOURS = Decimal("2080")


def to_decimal(value: Decimal | int | str | None) -> Decimal:
    """Coerce a stored value to Decimal, treating None as zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("float values are not accepted for money or ratios")
    return Decimal(str(value))


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, returning zero when the denominator is zero."""
    if denominator == ZERO:
        return ZERO
    return numerator / denominator


def decimal_sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def ratio_total_within_tolerance(
    ratios: Iterable[Decimal],
    tolerance: Decimal = DEFAULT_RATIO_TOLERANCE,
) -> tuple[bool, Decimal]:
    """Return (ok, total) for a set of allocation ratios that must sum to 1."""
    total = decimal_sum(ratios)
    return abs(total - ONE) <= tolerance, total
