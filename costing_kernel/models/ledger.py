"""
Module: costing_kernel.models.ledger
Responsibility: ORM persistence for the cost ledger inputs -- Accounts and
    their time-bucketed CostEntries for one hospital operating period.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - Account.code is unique per (hospital, period).
    - Account.total_cost is derived (sum of cost entries) and never stored.
    - CostEntry.month is in 1..12.

Audit relevance:
    Ledger rows are read-only inputs to the allocation pipeline.  Stage 1
    never writes to them.
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import DecimalAmount

if TYPE_CHECKING:
    from costing_kernel.models.activity import AccountActivityMapping


class AccountCategory(str, Enum):
    """Cost categories of ledger accounts."""

    LABOR = "labor"
    MATERIAL = "material"
    EXPENSE = "expense"
    EQUIPMENT = "equipment"
    DEPRECIATION = "depreciation"


class Account(TrackedBase):
    """
    Ledger account for one hospital operating period.

    Contract:
        Direct accounts must be mapped to at least one activity before
        allocation runs.  Indirect accounts with mappings must have ratios
        summing to 1.0 (within tolerance); unmapped indirect accounts are
        reported as unallocated.

    Guarantees:
        - total_cost equals the exact Decimal sum of cost_entries.

    Non-goals:
        - No general-ledger posting or reconciliation semantics.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint(
            "hospital_id", "period_id", "code", name="uq_account_hospital_period_code"
        ),
        Index("idx_account_scope", "hospital_id", "period_id"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[AccountCategory] = mapped_column(String(20), nullable=False)

    is_direct: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    cost_entries: Mapped[list["CostEntry"]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    activity_mappings: Mapped[list["AccountActivityMapping"]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def total_cost(self) -> Decimal:
        """Sum of all cost entries for the account."""
        return sum((entry.amount for entry in self.cost_entries), Decimal("0"))

    @property
    def has_cost_entries(self) -> bool:
        return bool(self.cost_entries)

    def monthly_costs(self) -> dict[int, Decimal]:
        """Cost totals keyed by month number."""
        totals: dict[int, Decimal] = {}
        for entry in self.cost_entries:
            totals[entry.month] = totals.get(entry.month, Decimal("0")) + entry.amount
        return totals


class CostEntry(TrackedBase):
    """Monthly cost amount booked against an account."""

    __tablename__ = "cost_entries"

    __table_args__ = (
        CheckConstraint("month >= 1 AND month <= 12", name="ck_cost_entry_month"),
        Index("idx_cost_entry_account", "account_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    month: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(DecimalAmount(), nullable=False)

    account: Mapped["Account"] = relationship(back_populates="cost_entries")

    def __repr__(self) -> str:
        return f"<CostEntry month={self.month} amount={self.amount}>"
