"""
JobTracker -- persistence-backed job lifecycle service.

Contract:
    The only component that mutates CalculationJobModel rows.  Every
    mutator locks the job row, validates the action against
    JOB_TRANSITIONS and records the result with clock-injected timestamps.

Architecture: costing_batch/services.  Imports from costing_batch.domain,
    costing_batch.models and the kernel.

Invariants enforced:
    - Transitions follow the table in costing_batch.domain.types; terminal
      jobs are never modified again.
    - completed_steps only moves forward and never exceeds total_steps.
    - All timestamps come from the injected Clock.

Non-goals:
    - Does NOT call ``session.commit()`` -- the caller controls boundaries.
      Progress writes are committed by the worker in their own short
      transactions so they never share the allocation transaction.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_kernel.domain.clock import Clock, SystemClock, as_utc
from costing_kernel.exceptions import JobNotFoundError
from costing_kernel.logging_config import get_logger

from costing_batch.domain.types import (
    ABC_TOTAL_STEPS,
    ACTIVE_STATUSES,
    CalculationJob,
    JobAction,
    JobStatus,
    JobSummary,
    check_transition,
)
from costing_batch.models.job import CalculationJobModel

logger = get_logger("batch.tracker")

_RECENT_JOBS = 10


class JobTracker:
    """Job lifecycle service.

    Contract:
        - ``enqueue()`` creates a PENDING job and returns its DTO.
        - ``mark_*()`` / ``update_progress()`` are the only mutators.
        - ``get_job()`` / ``list_jobs()`` / ``summary()`` for queries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        job_type: str,
        hospital_id: UUID,
        period_id: UUID | None = None,
        requested_by: UUID | None = None,
        total_steps: int = ABC_TOTAL_STEPS,
        progress_message: str | None = None,
    ) -> CalculationJob:
        """Create a new PENDING job and return it."""
        now = self._clock.now()
        model = CalculationJobModel(
            job_id=str(uuid4()),
            job_type=job_type,
            status=JobStatus.PENDING.value,
            hospital_id=hospital_id,
            period_id=period_id,
            requested_by=requested_by,
            total_steps=total_steps,
            completed_steps=0,
            progress_message=progress_message,
        )
        model.created_at = now
        model.updated_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "job_enqueued",
            extra={
                "job_id": model.job_id,
                "job_type": job_type,
                "hospital_id": str(hospital_id),
                "period_id": str(period_id) if period_id else None,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Mutators
    # -------------------------------------------------------------------------

    def mark_started(self, job_id: str) -> CalculationJob:
        model = self._lock(job_id)
        model.status = check_transition(job_id, JobAction.START, model.status).value
        model.started_at = self._clock.now()
        self._session.flush()
        logger.info("job_started", extra={"job_id": job_id})
        return model.to_dto()

    def update_progress(
        self, job_id: str, completed_steps: int, message: str | None = None
    ) -> CalculationJob:
        model = self._lock(job_id)
        check_transition(job_id, JobAction.UPDATE_PROGRESS, model.status)
        if completed_steps < model.completed_steps or completed_steps > model.total_steps:
            raise ValueError(
                f"completed_steps must be between {model.completed_steps} and "
                f"{model.total_steps}, got {completed_steps}"
            )
        model.completed_steps = completed_steps
        model.progress_message = message
        model.updated_at = self._clock.now()
        self._session.flush()
        logger.debug(
            "job_progress",
            extra={
                "job_id": job_id,
                "completed_steps": completed_steps,
                "total_steps": model.total_steps,
                "progress_message": message,
            },
        )
        return model.to_dto()

    def mark_completed(
        self, job_id: str, result: dict[str, Any] | None = None
    ) -> CalculationJob:
        model = self._lock(job_id)
        model.status = check_transition(job_id, JobAction.COMPLETE, model.status).value
        model.completed_at = self._clock.now()
        model.completed_steps = model.total_steps
        model.result = result
        self._session.flush()
        logger.info("job_completed", extra={"job_id": job_id})
        return model.to_dto()

    def mark_failed(self, job_id: str, error: str) -> CalculationJob:
        model = self._lock(job_id)
        model.status = check_transition(job_id, JobAction.FAIL, model.status).value
        model.completed_at = self._clock.now()
        model.error_message = error
        self._session.flush()
        logger.warning("job_failed", extra={"job_id": job_id, "error": error})
        return model.to_dto()

    def mark_cancelled(self, job_id: str) -> CalculationJob:
        model = self._lock(job_id)
        model.status = check_transition(job_id, JobAction.CANCEL, model.status).value
        model.completed_at = self._clock.now()
        self._session.flush()
        logger.info("job_cancelled", extra={"job_id": job_id})
        return model.to_dto()

    def fail_stale_jobs(self, timeout_seconds: int) -> list[CalculationJob]:
        """Fail RUNNING jobs started more than ``timeout_seconds`` ago."""
        cutoff = self._clock.now() - timedelta(seconds=timeout_seconds)
        running = self._session.execute(
            select(CalculationJobModel)
            .where(CalculationJobModel.status == JobStatus.RUNNING.value)
            .with_for_update()
        ).scalars().all()

        failed: list[CalculationJob] = []
        for model in running:
            started = as_utc(model.started_at)
            if started is None or started > cutoff:
                continue
            check_transition(model.job_id, JobAction.FAIL, model.status)
            model.status = JobStatus.FAILED.value
            model.completed_at = self._clock.now()
            model.error_message = (
                f"Job timed out after {timeout_seconds} seconds without completing"
            )
            failed.append(model.to_dto())
            logger.warning(
                "job_stale_failed",
                extra={"job_id": model.job_id, "started_at": started},
            )
        self._session.flush()
        return failed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: str, hospital_id: UUID | None = None) -> CalculationJob:
        """Return the job, scoped to ``hospital_id`` when given.

        Raises:
            JobNotFoundError: unknown id, or the job belongs to another hospital.
        """
        return self._get_model(job_id, hospital_id).to_dto()

    def get_status(self, job_id: str) -> JobStatus:
        return JobStatus(self._get_model(job_id).status)

    def find_active_for_period(self, period_id: UUID) -> CalculationJob | None:
        """Most recent PENDING or RUNNING job for the period, if any."""
        model = self._session.execute(
            select(CalculationJobModel)
            .where(
                CalculationJobModel.period_id == period_id,
                CalculationJobModel.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(CalculationJobModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def latest_for_period(self, period_id: UUID) -> CalculationJob | None:
        model = self._session.execute(
            select(CalculationJobModel)
            .where(CalculationJobModel.period_id == period_id)
            .order_by(CalculationJobModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_jobs(
        self,
        hospital_id: UUID,
        job_type: str | None = None,
        status: JobStatus | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CalculationJob]:
        """Jobs of a hospital, most recent first, optionally filtered."""
        stmt = select(CalculationJobModel).where(
            CalculationJobModel.hospital_id == hospital_id
        )
        if job_type is not None:
            stmt = stmt.where(CalculationJobModel.job_type == job_type)
        if status is not None:
            stmt = stmt.where(CalculationJobModel.status == JobStatus(status).value)
        stmt = stmt.order_by(CalculationJobModel.created_at.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def summary(self, hospital_id: UUID) -> JobSummary:
        """Counts by status and by type plus the ten most recent jobs."""
        jobs = self.list_jobs(hospital_id)
        by_status = {status.value: 0 for status in JobStatus}
        by_type: dict[str, int] = {}
        for job in jobs:
            by_status[job.status.value] += 1
            by_type[job.job_type] = by_type.get(job.job_type, 0) + 1
        return JobSummary(
            total_jobs=len(jobs),
            by_status=by_status,
            by_type=by_type,
            recent=tuple(jobs[:_RECENT_JOBS]),
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _get_model(
        self, job_id: str, hospital_id: UUID | None = None
    ) -> CalculationJobModel:
        stmt = select(CalculationJobModel).where(CalculationJobModel.job_id == job_id)
        if hospital_id is not None:
            stmt = stmt.where(CalculationJobModel.hospital_id == hospital_id)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise JobNotFoundError(job_id)
        return model

    def _lock(self, job_id: str) -> CalculationJobModel:
        model = self._session.execute(
            select(CalculationJobModel)
            .where(CalculationJobModel.job_id == job_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise JobNotFoundError(job_id)
        return model
