"""
Module: costing_kernel.models.activity
Responsibility: ORM persistence for Activities (cost pools) and the
    Account -> Activity allocation ratios that feed them.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - Engine-owned fields (ACTIVITY_ENGINE_FIELDS) change only inside
      engine_write_scope() (db/guards.py).
    - After Stage 2: total_cost == allocated_cost + employee_cost.
    - AccountActivityMapping.ratio in (0, 1]; per account the ratios never
      sum above 1.0 (db/guards.py, checked at flush).

Failure modes:
    - EngineFieldWriteError on a direct write to an engine-owned field.
    - MappingRatioError on an out-of-range or over-allocating ratio.
"""

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import DecimalAmount

if TYPE_CHECKING:
    from costing_kernel.models.ledger import Account

# Computed by the allocation pipeline, never by CRUD
ACTIVITY_ENGINE_FIELDS: tuple[str, ...] = (
    "allocated_cost",
    "employee_cost",
    "total_cost",
    "total_fte",
    "total_hours",
    "average_hourly_rate",
    "unit_cost",
)


class Activity(TrackedBase):
    """
    Activity cost pool.

    Contract:
        Receives account costs in Stage 1 and labor cost in Stage 2, then
        hands its total_cost to processes in Stage 3.

    Guarantees:
        - Engine-owned fields default to zero and are only written by the
          pipeline persistence step.

    Non-goals:
        - Department-level roll-ups (reporting concern).
    """

    __tablename__ = "activities"

    __table_args__ = (
        UniqueConstraint(
            "hospital_id", "period_id", "code", name="uq_activity_hospital_period_code"
        ),
        Index("idx_activity_scope", "hospital_id", "period_id"),
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

    department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("departments.id"),
        nullable=True,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[str | None] = mapped_column(String(50), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Engine-owned
    allocated_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    employee_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    total_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    total_fte: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    total_hours: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    average_hourly_rate: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    unit_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )

    account_mappings: Mapped[list["AccountActivityMapping"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Activity {self.code}: {self.name}>"


class AccountActivityMapping(TrackedBase):
    """Share of an account's cost assigned to an activity."""

    __tablename__ = "account_activity_mappings"

    __table_args__ = (
        UniqueConstraint("account_id", "activity_id", name="uq_account_activity"),
        Index("idx_aam_activity", "activity_id"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    activity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("activities.id"),
        nullable=False,
    )

    # Fraction of the account cost, (0, 1]
    ratio: Mapped[Decimal] = mapped_column(DecimalAmount(), nullable=False)

    account: Mapped["Account"] = relationship(back_populates="activity_mappings")

    activity: Mapped["Activity"] = relationship(back_populates="account_mappings")

    def __repr__(self) -> str:
        return f"<AccountActivityMapping {self.account_id}->{self.activity_id} {self.ratio}>"
