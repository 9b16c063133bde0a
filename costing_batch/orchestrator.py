"""
CostingOrchestrator -- DI container for the costing engine.

Contract:
    Wires settings, session factory, clock, pipeline orchestrator, worker
    pool, task registry and CalculationService.  Single place where the
    runtime dependencies are composed.

Architecture: costing_batch (top-level).  This is the canonical entry point
    for triggering and running calculations.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - The job runner handed to CalculationService dispatches through the
      task registry by job_type.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from costing_config import get_active_config
from costing_config.schema import EngineSettings
from costing_kernel.db.engine import session_scope
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.logging_config import configure_logging, get_logger
from costing_services.calculation_service import CalculationService
from costing_services.pipeline import PipelineOrchestrator

from costing_batch.domain.types import CalculationJob
from costing_batch.services.dispatcher import JobDispatcher
from costing_batch.services.tracker import JobTracker
from costing_batch.tasks.abc_calculation import AbcCalculationTask
from costing_batch.tasks.base import TaskRegistry

logger = get_logger("batch.orchestrator")


class CostingOrchestrator:
    """DI container for the costing engine.

    Contract:
        - ``from_settings()`` initializes the database engine and returns a
          fully wired orchestrator.
        - ``calculations`` is the CalculationService (trigger / status /
          results / cancel).
        - ``run_job()`` executes one job synchronously; the dispatcher calls
          it on a worker thread.

    Non-goals:
        - Does NOT create tables -- schema management is the caller's.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        dispatcher: JobDispatcher | None = None,
        task_registry: TaskRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher

        self._pipeline = PipelineOrchestrator(
            session_factory,
            clock=self._clock,
            ratio_tolerance=self._settings.ratio_tolerance,
            annual_work_hours=self._settings.annual_work_hours,
            decimal_places=self._settings.money_decimal_places,
        )
        if task_registry is None:
            task_registry = TaskRegistry()
            task_registry.register(
                AbcCalculationTask(session_factory, self._pipeline, self._clock)
            )
        self._task_registry = task_registry

        self._calculations = CalculationService(
            session_factory,
            self._pipeline,
            dispatcher=dispatcher,
            job_runner=self.run_job,
            clock=self._clock,
            settings=self._settings,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        with_dispatcher: bool = True,
    ) -> CostingOrchestrator:
        """Initialize the database from settings and wire everything.

        Args:
            settings: Optional settings; loaded with get_active_config() if None.
            clock: Optional clock for deterministic testing.
            with_dispatcher: Create a worker pool for background execution.
                Without one, jobs are only run through ``run_job()``.
        """
        from costing_kernel.db.engine import get_session_factory, init_engine_from_url

        settings = settings or get_active_config()
        configure_logging(level=settings.log_level)
        init_engine_from_url(settings.database_url)

        dispatcher = (
            JobDispatcher(
                max_workers=settings.worker_pool_size,
                queue_name=settings.queue_name,
            )
            if with_dispatcher
            else None
        )
        logger.info(
            "orchestrator_initialized",
            extra={
                "queue": settings.queue_name,
                "worker_pool_size": settings.worker_pool_size,
                "dispatcher": with_dispatcher,
            },
        )
        return cls(
            session_factory=get_session_factory(),
            settings=settings,
            clock=clock,
            dispatcher=dispatcher,
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def run_job(self, job_id: str) -> CalculationJob:
        """Run a queued job with the task registered for its job_type."""
        with session_scope(self._session_factory) as session:
            job = JobTracker(session, self._clock).get_job(job_id)
        return self._task_registry.get(job.job_type).run(job_id)

    def trigger_and_wait(
        self,
        hospital_id: UUID,
        period_id: UUID,
        requested_by: UUID | None = None,
    ) -> CalculationJob:
        """Queue a calculation and run it on the calling thread."""
        ticket = CalculationService(
            self._session_factory,
            self._pipeline,
            clock=self._clock,
            settings=self._settings,
        ).trigger(hospital_id, period_id, requested_by)
        return self.run_job(ticket["job_id"])

    def shutdown(self, wait: bool = True) -> None:
        if self._dispatcher is not None:
            self._dispatcher.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def calculations(self) -> CalculationService:
        return self._calculations

    @property
    def pipeline(self) -> PipelineOrchestrator:
        return self._pipeline

    @property
    def dispatcher(self) -> JobDispatcher | None:
        return self._dispatcher

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock
