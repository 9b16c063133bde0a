"""
ORM model for calculation job persistence.

Contract:
    CalculationJobModel persists the lifecycle, progress and result of one
    asynchronous job.  ``to_dto()`` converts it to the frozen
    ``CalculationJob``; only ``JobTracker`` mutates rows.

Architecture: costing_batch/models.  Imports from costing_kernel.db.base only.

Invariants enforced:
    - ``job_id`` is globally UNIQUE.
    - Timestamps are normalized to UTC on the way out; SQLite returns
      naive datetimes.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.domain.clock import as_utc

if TYPE_CHECKING:
    from costing_batch.domain.types import CalculationJob


class CalculationJobModel(TrackedBase):
    """Persistent calculation job record."""

    __tablename__ = "calculation_jobs"

    __table_args__ = (
        Index("ix_calculation_jobs_hospital_status", "hospital_id", "status"),
        Index("ix_calculation_jobs_period", "period_id"),
        Index("ix_calculation_jobs_created_at", "created_at"),
    )

    job_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    hospital_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("hospitals.id"),
        nullable=False,
    )
    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=True,
    )
    requested_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    total_steps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_steps: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<CalculationJob {self.job_id}: {self.job_type} {self.status}>"

    def to_dto(self) -> CalculationJob:
        from costing_batch.domain.types import CalculationJob, JobStatus

        return CalculationJob(
            job_id=self.job_id,
            job_type=self.job_type,
            status=JobStatus(self.status),
            hospital_id=self.hospital_id,
            period_id=self.period_id,
            requested_by=self.requested_by,
            total_steps=self.total_steps,
            completed_steps=self.completed_steps,
            progress_message=self.progress_message,
            error_message=self.error_message,
            result=self.result,
            created_at=as_utc(self.created_at),
            started_at=as_utc(self.started_at),
            completed_at=as_utc(self.completed_at),
        )
