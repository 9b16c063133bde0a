"""
Module: costing_kernel.models.labor
Responsibility: ORM persistence for Employees and their WorkRatios (share of
    time spent on an activity, optionally tagged to a process).
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - An employee's hourly cost is hourly_rate when set, otherwise
      annual_salary / annual work hours (2080 by default).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import DecimalAmount


class Employee(TrackedBase):
    """Staff member whose labor cost is folded into activities."""

    __tablename__ = "employees"

    __table_args__ = (
        UniqueConstraint(
            "hospital_id", "period_id", "code", name="uq_employee_hospital_period_code"
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

    department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("departments.id"),
        nullable=True,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    hourly_rate: Mapped[Decimal | None] = mapped_column(DecimalAmount(), nullable=True)

    annual_salary: Mapped[Decimal | None] = mapped_column(DecimalAmount(), nullable=True)

    fte: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("1"), nullable=False
    )

    work_ratios: Mapped[list["WorkRatio"]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Employee {self.code}: {self.name}>"


class WorkRatio(TrackedBase):
    """Share of an employee's time spent on an activity."""

    __tablename__ = "work_ratios"

    __table_args__ = (
        Index("idx_work_ratio_activity", "activity_id"),
        Index("idx_work_ratio_employee", "employee_id"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    employee_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("employees.id"),
        nullable=False,
    )

    activity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("activities.id"),
        nullable=False,
    )

    # Optional process tag used by the time driver
    process_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("processes.id"),
        nullable=True,
    )

    ratio: Mapped[Decimal] = mapped_column(DecimalAmount(), nullable=False)

    hours_per_period: Mapped[Decimal] = mapped_column(
        DecimalAmount(), default=Decimal("0"), nullable=False
    )

    employee: Mapped["Employee"] = relationship(back_populates="work_ratios")

    def __repr__(self) -> str:
        return f"<WorkRatio {self.employee_id}->{self.activity_id} {self.ratio}>"
