"""
Module: costing_kernel.models.hospital
Responsibility: ORM persistence for the tenant (Hospital), the operating
    Period a calculation runs against, and the optional Department owner of
    activities and employees.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one in_progress calculation per period.  The trigger locks the
      period row and checks calculation_status before writing it.
    - Only the pipeline orchestrator writes calculation_status to COMPLETED
      or FAILED.  The trigger writes PENDING, cancel writes CANCELLED.

Failure modes:
    - PeriodNotFoundError when a period id does not belong to the hospital.
    - CalculationInProgressError when a trigger hits an in_progress period.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase, UUIDString


class CalculationStatus(str, Enum):
    """Calculation lifecycle of an operating period.

    Contract: PENDING -> IN_PROGRESS -> COMPLETED | FAILED.  CANCELLED is
    written when the owning job is cancelled.  A new trigger may restart any
    status except IN_PROGRESS.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Hospital(TrackedBase):
    """Tenant.  Every costing entity is scoped to exactly one hospital."""

    __tablename__ = "hospitals"

    __table_args__ = (UniqueConstraint("code", name="uq_hospital_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Hospital {self.code}: {self.name}>"


class Period(TrackedBase):
    """
    Operating period a costing calculation runs against.

    Contract:
        calculation_status reflects the last (or current) pipeline run for
        the period.  A period never exposes a partially calculated state:
        engine-owned fields are only committed together with COMPLETED.

    Guarantees:
        - calculation_error is None unless the status is FAILED.
        - last_calculated_at is only set on COMPLETED.
        - While IN_PROGRESS, calculation_run_id names the run that may
          finish, fail or cancel it; a superseded run never writes the status.

    Non-goals:
        - Period open/close accounting control is not modelled here.
    """

    __tablename__ = "periods"

    __table_args__ = (
        UniqueConstraint("hospital_id", "name", name="uq_period_hospital_name"),
        Index("idx_period_calc_status", "calculation_status"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    # Human-readable name (e.g., "2024-Q1", "January 2024")
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    calculation_status: Mapped[CalculationStatus] = mapped_column(
        String(20),
        default=CalculationStatus.PENDING,
        nullable=False,
    )

    last_calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    calculation_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    calculation_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    calculation_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Job (or ad-hoc run) that currently owns the in-progress calculation
    calculation_run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Period {self.name}: {self.calculation_status}>"

    @property
    def is_calculating(self) -> bool:
        return self.calculation_status == CalculationStatus.IN_PROGRESS

    @property
    def is_calculated(self) -> bool:
        return self.calculation_status == CalculationStatus.COMPLETED

    def is_owned_by(self, run_id: str | None) -> bool:
        """True while this period is IN_PROGRESS for ``run_id``."""
        return (
            self.calculation_status == CalculationStatus.IN_PROGRESS
            and run_id is not None
            and self.calculation_run_id == run_id
        )

    def mark_pending(self) -> None:
        """Reset calculation state for a freshly queued job."""
        self.calculation_status = CalculationStatus.PENDING
        self.calculation_run_id = None
        self.calculation_started_at = None
        self.calculation_completed_at = None
        self.calculation_error = None

    def mark_in_progress(self, started_at: datetime, run_id: str | None = None) -> None:
        self.calculation_status = CalculationStatus.IN_PROGRESS
        self.calculation_run_id = run_id
        self.calculation_started_at = started_at
        self.calculation_completed_at = None
        self.calculation_error = None

    def mark_completed(self, completed_at: datetime) -> None:
        self.calculation_status = CalculationStatus.COMPLETED
        self.last_calculated_at = completed_at
        self.calculation_completed_at = completed_at
        self.calculation_error = None

    def mark_failed(self, error: str, failed_at: datetime) -> None:
        self.calculation_status = CalculationStatus.FAILED
        self.calculation_error = error
        self.calculation_completed_at = failed_at

    def mark_cancelled(self, cancelled_at: datetime) -> None:
        self.calculation_status = CalculationStatus.CANCELLED
        self.calculation_completed_at = cancelled_at
        self.calculation_error = None


class Department(TrackedBase):
    """Organisational unit owning activities and employees."""

    __tablename__ = "departments"

    __table_args__ = (
        UniqueConstraint("hospital_id", "code", name="uq_department_hospital_code"),
    )

    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Department {self.code}: {self.name}>"
