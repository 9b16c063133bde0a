"""
Module: costing_kernel.db.base
Responsibility: Declarative base for every costing table: uuid4 primary keys,
    the Python-type to column-type map, and created/updated timestamps.
Architecture position: Kernel > DB.  Imported by every model module; imports
    only db/types.py.

Invariants enforced:
    - Every row is keyed by a uuid4 stored as 36-character text, so ids are
      identical on PostgreSQL and SQLite.
    - An unannotated ``Mapped[Decimal]`` column becomes DecimalAmount; money,
      ratios, hours and FTEs never pass through float.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from costing_kernel.db.types import DecimalAmount


class UUIDString(TypeDecorator):
    """UUID column stored as String(36); accepts UUID or its text form on bind."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, PyUUID) else PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for hospital, ledger, costing and job tables.

    Guarantees:
        - ``id`` is generated client-side, so it is available after flush()
          without a round trip for RETURNING.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalAmount(),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Base for tables carrying database-maintained created_at / updated_at."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
