"""
Module: costing_kernel.models.process
Responsibility: ORM persistence for Processes (billable and non-billable
    services), allocation Drivers, Activity -> Process mappings, and the
    billing codes / billed volumes that give each process its output volume
    and revenue.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - Engine-owned fields (PROCESS_ENGINE_FIELDS) change only inside
      engine_write_scope() (db/guards.py).
    - Process volume for a period = sum of BillingVolume.volume over the
      process's billing codes; revenue = sum of volume * price.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import DecimalAmount

PROCESS_ENGINE_FIELDS: tuple[str, ...] = (
    "allocated_cost",
    "total_cost",
    "unit_cost",
    "profit_margin",
)


class DriverType(str, Enum):
    """How an activity's cost is split across the processes it feeds."""

    VOLUME = "volume"
    TIME = "time"
    RESOURCE = "resource"
    NONE = "none"


class Driver(TrackedBase):
    """Cost driver attached to activity -> process mappings."""

    __tablename__ = "drivers"

    __table_args__ = (
        UniqueConstraint(
            "hospital_id", "period_id", "code", name="uq_driver_hospital_period_code"
        ),
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

    # Stored as free text; unrecognised values fall back to the fixed rate
    driver_type: Mapped[str] = mapped_column(
        String(20),
        default=DriverType.VOLUME.value,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Driver {self.code}: {self.driver_type}>"


class Process(TrackedBase):
    """
    Billable or non-billable hospital service.

    Contract:
        Receives activity costs in Stage 3.  unit_cost and profit_margin
        are derived from total_cost, billed volume and revenue.

    Guarantees:
        - Engine-owned fields default to zero.
    """

    __tablename__ = "processes"

    __table_args__ = (
        UniqueConstraint(
            "hospital_id", "period_id", "code", name="uq_process_hospital_period_code"
        ),
        Index("idx_process_scope", "hospital_id", "period_id"),
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

    activity_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("activities.id"),
        nullable=True,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_billable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Engine-owned
    allocated_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    total_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    unit_cost: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )
    profit_margin: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )

    billing_codes: Mapped[list["BillingCode"]] = relationship(
        back_populates="process",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Process {self.code}: {self.name}>"


class ActivityProcessMapping(TrackedBase):
    """Assignment of an activity's cost to a process via rate and driver."""

    __tablename__ = "activity_process_mappings"

    __table_args__ = (
        UniqueConstraint("activity_id", "process_id", name="uq_activity_process"),
        Index("idx_apm_process", "process_id"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    activity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("activities.id"),
        nullable=False,
    )

    process_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("processes.id"),
        nullable=False,
    )

    driver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("drivers.id"),
        nullable=True,
    )

    # Fixed share used when there is no driver (or a resource driver)
    rate: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )

    driver: Mapped["Driver | None"] = relationship()

    def __repr__(self) -> str:
        return f"<ActivityProcessMapping {self.activity_id}->{self.process_id} {self.rate}>"


class BillingCode(TrackedBase):
    """Revenue code belonging to a process, with its unit price."""

    __tablename__ = "billing_codes"

    __table_args__ = (
        UniqueConstraint("hospital_id", "code", name="uq_billing_code_hospital_code"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    process_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("processes.id"),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )

    process: Mapped["Process"] = relationship(back_populates="billing_codes")

    def __repr__(self) -> str:
        return f"<BillingCode {self.code}: {self.price}>"


class BillingVolume(TrackedBase):
    """Volume billed for a code in one period."""

    __tablename__ = "billing_volumes"

    __table_args__ = (
        UniqueConstraint("billing_code_id", "period_id", name="uq_billing_volume"),
    )

    billing_code_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("billing_codes.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    volume: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )

    def __repr__(self) -> str:
        return f"<BillingVolume {self.billing_code_id} {self.volume}>"
