"""
costing_services.calculation_service -- Trigger, status, results and cancel.

Responsibility:
    The outward surface of the costing engine.  Queues a calculation for a
    period, reports job and period status, serves results of completed
    periods and cancels queued or running jobs.

Architecture position:
    Services -- stateful orchestration over the pipeline, the job tracker
    and the worker pool.  The function that executes a job is injected as
    ``job_runner`` so this module never imports the batch tasks.

Invariants enforced:
    - At most one active calculation per period: the trigger locks the
      period row, rejects IN_PROGRESS periods and periods with a PENDING or
      RUNNING job, then writes the job and PENDING in one transaction.
    - Every job and period lookup is scoped to the calling hospital.
    - Cancel only applies to PENDING / RUNNING jobs; cancelling an ABC job
      marks its period CANCELLED.

Failure modes:
    - PeriodNotFoundError / JobNotFoundError for ids of another hospital.
    - CalculationInProgressError on a conflicting trigger.
    - CalculationNotCompletedError when results are requested too early.
    - JobNotCancellableError when the job already finished.

Non-goals:
    - Authentication and HTTP routing.  Callers map the typed errors onto
      their own status codes.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from costing_batch.domain.types import (
    ABC_CALCULATION,
    CalculationJob,
    JobStatus,
)
from costing_batch.services.dispatcher import JobDispatcher
from costing_batch.services.tracker import JobTracker
from costing_config.schema import EngineSettings
from costing_kernel.db.engine import session_scope
from costing_kernel.domain.clock import Clock, SystemClock, as_utc
from costing_kernel.exceptions import (
    CalculationInProgressError,
    JobNotCancellableError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models import (
    Account,
    AccountActivityMapping,
    Activity,
    ActivityProcessMapping,
    CalculationStatus,
    Period,
    Process,
)
from costing_services.pipeline import PipelineOrchestrator
from costing_services.results_service import ResultsService
from costing_services.snapshot import get_period

logger = get_logger("services.calculation")

JobRunner = Callable[[str], Any]

QUEUED_MESSAGE = "ABC calculation queued for processing"

TOTAL_STAGES = 3

# Seconds: fixed overhead plus a per-entity cost
_BASE_SECONDS = Decimal("30")
_SECONDS_PER_ACCOUNT = Decimal("0.1")
_SECONDS_PER_ACTIVITY = Decimal("0.2")
_SECONDS_PER_PROCESS = Decimal("0.1")
_SECONDS_PER_MAPPING = Decimal("0.05")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def estimate_seconds(
    accounts: int, activities: int, processes: int, mappings: int
) -> dict[str, Any]:
    """Rough run-time estimate from the size of the period's data."""
    seconds = (
        _BASE_SECONDS
        + accounts * _SECONDS_PER_ACCOUNT
        + activities * _SECONDS_PER_ACTIVITY
        + processes * _SECONDS_PER_PROCESS
        + mappings * _SECONDS_PER_MAPPING
    )
    return {
        "estimated_seconds": int(seconds.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        "estimated_minutes": float(
            (seconds / Decimal("60")).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        ),
        "factors": {
            "accounts": accounts,
            "activities": activities,
            "processes": processes,
            "mappings": mappings,
        },
    }


def stage_progress(status: CalculationStatus | str) -> dict[str, Any]:
    """Coarse stage progress of a period derived from its status alone."""
    status = CalculationStatus(status)
    if status == CalculationStatus.COMPLETED:
        completed = 3
    elif status == CalculationStatus.IN_PROGRESS:
        completed = 1
    else:
        completed = 0
    percentage = (Decimal(completed) / Decimal(TOTAL_STAGES) * Decimal("100")).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    return {
        "total_stages": TOTAL_STAGES,
        "completed_stages": completed,
        "percentage": percentage,
    }


def job_view(
    job: CalculationJob,
    period: Period | None = None,
    now: datetime | None = None,
    detailed: bool = False,
) -> dict[str, Any]:
    """Status payload of a job; ``detailed`` adds error, result and ETA."""
    view: dict[str, Any] = {
        "job_id": job.job_id,
        "job_type": job.job_type,
        "status": job.status.value,
        "progress": {
            "percentage": job.progress_percentage,
            "completed_steps": job.completed_steps,
            "total_steps": job.total_steps,
            "message": job.progress_message,
        },
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "duration": job.duration,
    }
    if period is not None:
        view["period"] = {
            "id": period.id,
            "name": period.name,
            "calculation_status": CalculationStatus(period.calculation_status).value,
        }
    if detailed:
        view["error_message"] = job.error_message
        view["result"] = job.result
        view["estimated_remaining_time"] = (
            job.estimated_remaining_time(now) if now is not None else None
        )
    return view


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CalculationService:
    """
    Calculation API over one database.

    Contract:
        Each public method runs in its own transaction opened from
        ``session_factory``; dispatch and revoke happen after commit.
    Guarantees:
        - ``trigger()`` never dispatches a job whose row was not committed.
        - Stale-job reaping fails the period through the pipeline
          orchestrator, the single writer of FAILED.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        pipeline: PipelineOrchestrator,
        dispatcher: JobDispatcher | None = None,
        job_runner: JobRunner | None = None,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ):
        self._session_factory = session_factory
        self._pipeline = pipeline
        self._dispatcher = dispatcher
        self._job_runner = job_runner
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()

    # -------------------------------------------------------------------------
    # Trigger
    # -------------------------------------------------------------------------

    def trigger(
        self,
        hospital_id: UUID,
        period_id: UUID,
        requested_by: UUID | None = None,
    ) -> dict[str, Any]:
        """Queue an ABC calculation for the period.

        Raises:
            PeriodNotFoundError: Unknown period for the hospital.
            CalculationInProgressError: A run is active for the period.
        """
        with session_scope(self._session_factory) as session:
            period = get_period(session, hospital_id, period_id, for_update=True)
            if period.is_calculating:
                raise CalculationInProgressError(str(period_id))

            tracker = JobTracker(session, self._clock)
            active = tracker.find_active_for_period(period_id)
            if active is not None:
                raise CalculationInProgressError(str(period_id), active.job_id)

            job = tracker.enqueue(
                ABC_CALCULATION,
                hospital_id=hospital_id,
                period_id=period_id,
                requested_by=requested_by,
                progress_message=QUEUED_MESSAGE,
            )
            period.mark_pending()
            estimate = self._estimate(session, hospital_id, period_id)

        if self._dispatcher is not None and self._job_runner is not None:
            self._dispatcher.submit(job.job_id, self._job_runner, job.job_id)

        logger.info(
            "calculation_triggered",
            extra={
                "job_id": job.job_id,
                "hospital_id": str(hospital_id),
                "period_id": str(period_id),
                "estimated_seconds": estimate["estimated_seconds"],
            },
        )
        return {
            "job_id": job.job_id,
            "status": "queued",
            "message": "ABC calculation has been queued for background processing",
            "estimated_duration": estimate,
        }

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def job_status(self, hospital_id: UUID, job_id: str) -> dict[str, Any]:
        """Detailed status of one job of the hospital.

        Raises:
            JobNotFoundError: Unknown job, or the job belongs to another hospital.
        """
        with session_scope(self._session_factory) as session:
            job = JobTracker(session, self._clock).get_job(job_id, hospital_id)
            period = (
                get_period(session, hospital_id, job.period_id)
                if job.period_id is not None
                else None
            )
            return job_view(job, period, now=self._clock.now(), detailed=True)

    def period_status(self, hospital_id: UUID, period_id: UUID) -> dict[str, Any]:
        """Calculation status of a period when no job id is known."""
        with session_scope(self._session_factory) as session:
            period = get_period(session, hospital_id, period_id)
            latest = JobTracker(session, self._clock).latest_for_period(period_id)
            return {
                "period_id": period.id,
                "period_name": period.name,
                "calculation_status": CalculationStatus(period.calculation_status).value,
                "last_calculated_at": as_utc(period.last_calculated_at),
                "calculation_started_at": as_utc(period.calculation_started_at),
                "calculation_completed_at": as_utc(period.calculation_completed_at),
                "calculation_error": period.calculation_error,
                "progress": stage_progress(period.calculation_status),
                "latest_job_id": latest.job_id if latest is not None else None,
            }

    def results(self, hospital_id: UUID, period_id: UUID) -> dict[str, Any]:
        """Results of a completed period.

        Raises:
            CalculationNotCompletedError: The period is not COMPLETED.
        """
        with session_scope(self._session_factory) as session:
            return ResultsService(session).get_results(hospital_id, period_id)

    def period_summary(self, hospital_id: UUID, period_id: UUID) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            return ResultsService(session).period_summary(hospital_id, period_id)

    def list_jobs(
        self,
        hospital_id: UUID,
        job_type: str | None = None,
        status: JobStatus | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            jobs = JobTracker(session, self._clock).list_jobs(
                hospital_id, job_type=job_type, status=status, limit=limit, offset=offset,
            )
            return [job_view(job) for job in jobs]

    def job_summary(self, hospital_id: UUID) -> dict[str, Any]:
        """Counts by status and type plus the most recent jobs."""
        with session_scope(self._session_factory) as session:
            summary = JobTracker(session, self._clock).summary(hospital_id)
            return {
                "total_jobs": summary.total_jobs,
                "by_status": summary.by_status,
                "by_type": summary.by_type,
                "recent_jobs": [job_view(job) for job in summary.recent],
            }

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel(self, hospital_id: UUID, job_id: str) -> dict[str, Any]:
        """Cancel a PENDING or RUNNING job.

        Queued work is revoked from the worker pool.  Running work keeps
        computing; the pipeline discards its results before commit.

        Raises:
            JobNotFoundError: Unknown job for the hospital.
            JobNotCancellableError: The job already finished.
        """
        with session_scope(self._session_factory) as session:
            tracker = JobTracker(session, self._clock)
            job = tracker.get_job(job_id, hospital_id)
            if not job.is_cancellable:
                raise JobNotCancellableError(job_id, job.status.value)

            job = tracker.mark_cancelled(job_id)
            period = None
            if job.job_type == ABC_CALCULATION and job.period_id is not None:
                period = get_period(session, hospital_id, job.period_id, for_update=True)
                if not period.is_calculating or period.is_owned_by(job_id):
                    period.mark_cancelled(self._clock.now())
            view = job_view(job, period)

        revoked = self._dispatcher.revoke(job_id) if self._dispatcher is not None else False
        logger.info(
            "calculation_cancelled",
            extra={"job_id": job_id, "revoked": revoked},
        )
        return view

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def reap_stale_jobs(self) -> list[str]:
        """Fail jobs that ran longer than the stale-job timeout.

        Returns the ids of the jobs that were failed.
        """
        timeout = self._settings.stale_job_timeout_seconds
        with session_scope(self._session_factory) as session:
            stale = JobTracker(session, self._clock).fail_stale_jobs(timeout)

        for job in stale:
            if job.job_type == ABC_CALCULATION and job.period_id is not None:
                self._pipeline.fail_timed_out_period(
                    job.hospital_id,
                    job.period_id,
                    job.job_id,
                    job.error_message or "Job timed out",
                )
        return [job.job_id for job in stale]

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _estimate(
        self, session: Session, hospital_id: UUID, period_id: UUID
    ) -> dict[str, Any]:
        def count(model) -> int:
            return session.execute(
                select(func.count()).select_from(model).where(
                    model.hospital_id == hospital_id, model.period_id == period_id
                )
            ).scalar_one()

        account_mappings = session.execute(
            select(func.count())
            .select_from(AccountActivityMapping)
            .join(Account, Account.id == AccountActivityMapping.account_id)
            .where(Account.hospital_id == hospital_id, Account.period_id == period_id)
        ).scalar_one()
        process_mappings = session.execute(
            select(func.count())
            .select_from(ActivityProcessMapping)
            .join(Activity, Activity.id == ActivityProcessMapping.activity_id)
            .where(Activity.hospital_id == hospital_id, Activity.period_id == period_id)
        ).scalar_one()

        return estimate_seconds(
            accounts=count(Account),
            activities=count(Activity),
            processes=count(Process),
            mappings=account_mappings + process_mappings,
        )
