"""Pure domain primitives: clock and Decimal helpers."""

from costing_kernel.domain.clock import Clock, DeterministicClock, SystemClock, as_utc
from costing_kernel.domain.numeric import (
    DEFAULT_ANNUAL_WORK_HOURS,
    DEFAULT_RATIO_TOLERANCE,
    ZERO,
    decimal_sum,
    ratio_total_within_tolerance,
    safe_divide,
    to_decimal,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "as_utc",
    "DEFAULT_ANNUAL_WORK_HOURS",
    "DEFAULT_RATIO_TOLERANCE",
    "ZERO",
    "decimal_sum",
    "ratio_total_within_tolerance",
    "safe_divide",
    "to_decimal",
]
