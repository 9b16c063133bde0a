"""
Module: costing_kernel.db.types
Responsibility: Column types and rounding utilities for money, ratio and
    hour values.  Centralizes precision so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the kernel.  All amounts, ratios, hours and FTEs
      are Decimal end to end, including the SQLite test backend, which has no
      native decimal type and would otherwise round-trip through float.
    - round_money() is the ONLY sanctioned rounding function for values
      written back to the store.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

# 38 digits total, 9 decimal places
MONEY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP


class DecimalAmount(TypeDecorator):
    """
    Exact Decimal column.

    Contract:
        Stored as Numeric(38, 9) on PostgreSQL and as canonical decimal text
        on SQLite.  Always returns Decimal (never float) on load.

    Non-goals:
        Comparisons and aggregates in SQL are not portable across the two
        representations; callers load rows and compute in Python.
    """

    impl = Numeric(38, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(
            Numeric(38, MONEY_DECIMAL_PLACES, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = value if isinstance(value, Decimal) else Decimal(str(value))
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a value to the stored precision.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized to ``decimal_places`` using the
        given rounding mode (ROUND_HALF_UP by default).
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)
