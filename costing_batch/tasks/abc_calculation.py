"""
AbcCalculationTask -- runs one queued ABC calculation job.

Contract:
    Maps a pipeline run onto the job lifecycle:

        pending --mark_started--> running --pipeline--> completed | failed
        cancelled (before start)  -> skipped, nothing runs
        cancelled (while running) -> pipeline discards results, job stays
                                     cancelled
        reaped (failed by timeout) -> pipeline discards results, job and
                                     period stay failed

Architecture: costing_batch/tasks.  Imports the pipeline orchestrator from
    costing_services and the tracker from costing_batch.services.

Invariants enforced:
    - Progress writes use their own short transactions and never share the
      allocation transaction.  A failed progress write is logged and the
      run continues.
    - The job result stored on completion is JSON-safe (Decimals as text).
    - A job that was cancelled or reaped while running is never moved to
      completed, and its run never overwrites the period status.
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from costing_kernel.db.engine import session_scope
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.exceptions import (
    CalculationCancelledError,
    InvalidJobTransitionError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_services.pipeline import PipelineOrchestrator, PipelineOutcome

from costing_batch.domain.types import (
    ABC_CALCULATION,
    TERMINAL_STATUSES,
    CalculationJob,
    JobStatus,
)
from costing_batch.services.tracker import JobTracker

logger = get_logger("batch.tasks.abc_calculation")


class AbcCalculationTask:
    """Execute the three-stage pipeline for the job's period."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        pipeline: PipelineOrchestrator,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._pipeline = pipeline
        self._clock = clock or SystemClock()

    @property
    def task_type(self) -> str:
        return ABC_CALCULATION

    @property
    def description(self) -> str:
        return "Activity-based costing calculation for one period"

    def run(self, job_id: str) -> CalculationJob:
        with session_scope(self._session_factory) as session:
            tracker = JobTracker(session, self._clock)
            job = tracker.get_job(job_id)
            if job.status == JobStatus.CANCELLED:
                logger.info("job_skipped_cancelled", extra={"job_id": job_id})
                return job
            job = tracker.mark_started(job_id)

        with LogContext.bind(
            job_id=job_id,
            hospital_id=str(job.hospital_id),
            period_id=str(job.period_id),
        ):
            try:
                outcome = self._pipeline.run(
                    job.hospital_id,
                    job.period_id,
                    progress=lambda step, message: self._progress(job_id, step, message),
                    is_cancelled=lambda: self._is_abandoned(job_id),
                    job_id=job_id,
                )
            except CalculationCancelledError:
                logger.info("job_results_discarded", extra={"job_id": job_id})
                return self._current(job_id)
            except Exception as exc:
                logger.exception("job_run_error", extra={"job_id": job_id})
                return self._fail(job_id, f"Unexpected error: {exc}")

            return self._finish(job_id, outcome)

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def _progress(self, job_id: str, step: int, message: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                JobTracker(session, self._clock).update_progress(job_id, step, message)
        except InvalidJobTransitionError as exc:
            logger.info(
                "job_progress_ignored",
                extra={"job_id": job_id, "status": exc.current_status},
            )
        except Exception:
            logger.warning(
                "job_progress_write_failed",
                extra={"job_id": job_id, "step": step},
                exc_info=True,
            )

    def _is_abandoned(self, job_id: str) -> bool:
        """Cancelled, or already failed by the stale-job reaper."""
        with session_scope(self._session_factory) as session:
            return JobTracker(session, self._clock).get_status(job_id) in TERMINAL_STATUSES

    # -------------------------------------------------------------------------
    # Finish
    # -------------------------------------------------------------------------

    def _finish(self, job_id: str, outcome: PipelineOutcome) -> CalculationJob:
        if not outcome.success:
            return self._fail(job_id, outcome.error_message or "Calculation failed")
        try:
            with session_scope(self._session_factory) as session:
                return JobTracker(session, self._clock).mark_completed(
                    job_id, outcome.to_dict()
                )
        except InvalidJobTransitionError:
            logger.warning("job_completion_rejected", extra={"job_id": job_id})
            return self._current(job_id)

    def _fail(self, job_id: str, error: str) -> CalculationJob:
        try:
            with session_scope(self._session_factory) as session:
                return JobTracker(session, self._clock).mark_failed(job_id, error)
        except InvalidJobTransitionError:
            logger.warning("job_failure_rejected", extra={"job_id": job_id})
            return self._current(job_id)

    def _current(self, job_id: str) -> CalculationJob:
        with session_scope(self._session_factory) as session:
            return JobTracker(session, self._clock).get_job(job_id)
