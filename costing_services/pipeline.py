"""
costing_services.pipeline -- Three-stage ABC pipeline orchestrator.

Responsibility:
    Run Resource Allocation (Stage 1), Activity Cost Pool (Stage 2) and
    Process Assignment (Stage 3) for one period as a single unit of work.
    The engines compute in memory from a snapshot; this module owns the
    transaction boundaries, the prerequisite check and the write-back of
    engine-owned fields.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes costing_engines (pure) with costing_services.snapshot (read)
    and the kernel's session_scope / engine_write_scope (write).

Transactions:

    A  lock period, claim it for this run (mark in_progress) ... commit
    B  load snapshot -> prerequisites -> stage 1 -> stage 2 -> stage 3
       -> write back (engine_write_scope) -> abandon gate
       -> re-lock period, still ours? -> mark completed
       .............................................. commit | rollback
    C  (on failure) mark failed / cancelled if still ours ....... commit

Invariants enforced:
    - All-or-nothing: every engine-owned field of the period is written in
      transaction B, together with the COMPLETED status.  A failure rolls
      all of it back, so a period never shows a partial allocation.
    - Only this orchestrator writes calculation_status COMPLETED or FAILED.
    - A run only finishes, fails or cancels the period it claimed in A
      (``Period.is_owned_by``).  Once its job is cancelled or timed out, or
      a newer run has claimed the period, its results are discarded and
      the period status it finds is left alone.
    - Prerequisite failures list every missing input and never touch
      financial data.
    - Progress callbacks run between stages and own their own sessions;
      they can never roll back the financial result.

Failure modes:
    - PeriodNotFoundError propagates before anything is written.
    - Prerequisite and stage failures return a failed PipelineOutcome with
      the period marked FAILED.
    - Any other exception is logged and surfaced as
      "Unexpected error: <message>" on the period.
    - CalculationCancelledError (the abandon gate fired or the period was
      taken over) marks the period CANCELLED only if this run still owns
      it, then is re-raised to the caller.
    - CalculationInProgressError in A when another run owns the period.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from costing_engines import (
    ActivityCostPoolEngine,
    PipelineResult,
    ProcessAssignmentEngine,
    ResourceAllocationEngine,
)
from costing_kernel.db.engine import session_scope
from costing_kernel.db.guards import engine_write_scope
from costing_kernel.db.types import MONEY_DECIMAL_PLACES, round_money
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.numeric import (
    DEFAULT_ANNUAL_WORK_HOURS,
    DEFAULT_RATIO_TOLERANCE,
)
from costing_kernel.exceptions import (
    CalculationCancelledError,
    CalculationInProgressError,
    PrerequisitesNotMetError,
    StageFailedError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models import (
    ACTIVITY_ENGINE_FIELDS,
    PROCESS_ENGINE_FIELDS,
    CalculationStatus,
)
from costing_services.snapshot import PeriodSnapshot, get_period, load_period_snapshot

logger = get_logger("services.pipeline")

ProgressCallback = Callable[[int, str], None]
CancelCheck = Callable[[], bool]

STAGE_MESSAGES: dict[int, str] = {
    1: "Stage 1 complete: resource costs allocated to activities",
    2: "Stage 2 complete: activity cost pools calculated",
    3: "Stage 3 complete: activity costs assigned to processes",
}


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of one orchestrator run.

    ``result`` is only set on success.  ``to_dict()`` is the JSON-safe
    payload stored on the calculation job.
    """

    success: bool
    hospital_id: UUID
    period_id: UUID
    errors: tuple[str, ...] = ()
    result: PipelineResult | None = None
    completed_at: datetime | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def error_message(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "hospital_id": str(self.hospital_id),
            "period_id": str(self.period_id),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
        if self.completed_at is not None:
            payload["completed_at"] = self.completed_at.isoformat()
        if self.result is not None:
            stage1, stage2, stage3 = (
                self.result.stage1,
                self.result.stage2,
                self.result.stage3,
            )
            payload["stages"] = {
                "resource_allocation": {
                    "accounts_allocated": stage1.accounts_allocated,
                    "total_allocated": str(stage1.total_allocated),
                    "unallocated_total": str(stage1.unallocated_total),
                    "unallocated_accounts": [u.code for u in stage1.unallocated],
                },
                "activity_cost_pool": {
                    "activities_processed": stage2.activities_processed,
                    "total_cost": str(stage2.total_cost),
                },
                "process_assignment": {
                    "processes_processed": stage3.processes_processed,
                    "total_cost": str(stage3.total_cost),
                },
            }
        return payload


# ---------------------------------------------------------------------------
# Prerequisites
# ---------------------------------------------------------------------------


def check_prerequisites(snapshot: PeriodSnapshot) -> list[str]:
    """Every missing pipeline input for the period; empty when ready."""
    name = snapshot.period.name
    errors: list[str] = []
    if not snapshot.has_cost_entries:
        errors.append(f"No cost inputs found for any accounts in period {name}")
    if not snapshot.account_mappings:
        errors.append(f"No account-activity mappings found for period {name}")
    if not snapshot.process_mappings:
        errors.append(f"No activity-process mappings found for period {name}")
    if not snapshot.work_ratios:
        errors.append(f"No employee work ratios found for period {name}")
    return errors


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PipelineOrchestrator:
    """
    Runs the ABC pipeline for one period.

    Contract:
        ``run()`` either commits every engine-owned field of the period
        together with COMPLETED, or commits nothing but the FAILED /
        CANCELLED status.
    Guarantees:
        - Stages execute strictly in order 1 -> 2 -> 3.
        - Persisted amounts are rounded with ``round_money`` at the
          configured precision; in-memory arithmetic is unrounded.
    Non-goals:
        - Does NOT manage jobs.  The batch task maps outcomes onto the
          job lifecycle.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        ratio_tolerance: Decimal = DEFAULT_RATIO_TOLERANCE,
        annual_work_hours: Decimal = DEFAULT_ANNUAL_WORK_HOURS,
        decimal_places: int = MONEY_DECIMAL_PLACES,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._decimal_places = decimal_places
        self._resource_allocation = ResourceAllocationEngine(ratio_tolerance)
        self._activity_cost_pool = ActivityCostPoolEngine(annual_work_hours)
        self._process_assignment = ProcessAssignmentEngine()

    def run(
        self,
        hospital_id: UUID,
        period_id: UUID,
        progress: ProgressCallback | None = None,
        is_cancelled: CancelCheck | None = None,
        job_id: str | None = None,
    ) -> PipelineOutcome:
        """Run all three stages for the period.

        ``is_cancelled`` returns True once the caller no longer wants the
        result (job cancelled or timed out).  ``job_id`` doubles as the run
        id stamped on the period; ad-hoc runs get a random one.

        Raises:
            PeriodNotFoundError: Unknown period for the hospital.
            CalculationInProgressError: Another run owns the period.
            CalculationCancelledError: The run was abandoned or superseded
                before commit.
        """
        run_id = job_id or uuid4().hex
        if is_cancelled is not None and is_cancelled():
            logger.info(
                "pipeline_skipped_abandoned",
                extra={"period_id": str(period_id), "job_id": job_id},
            )
            raise CalculationCancelledError(job_id or run_id)

        with session_scope(self._session_factory) as session:
            period = get_period(session, hospital_id, period_id, for_update=True)
            if period.is_calculating and period.calculation_run_id != run_id:
                raise CalculationInProgressError(str(period_id), period.calculation_run_id)
            period.mark_in_progress(self._clock.now(), run_id)

        logger.info(
            "pipeline_started",
            extra={"hospital_id": str(hospital_id), "period_id": str(period_id)},
        )

        try:
            with session_scope(self._session_factory) as session:
                snapshot = load_period_snapshot(session, hospital_id, period_id)

                missing = check_prerequisites(snapshot)
                if missing:
                    raise PrerequisitesNotMetError(str(period_id), missing)

                result = self._calculate(snapshot, progress)

                with engine_write_scope():
                    self._write_back(snapshot, result)
                    session.flush()

                if is_cancelled is not None and is_cancelled():
                    raise CalculationCancelledError(job_id or run_id)

                period = get_period(session, hospital_id, period_id, for_update=True)
                if not period.is_owned_by(run_id):
                    raise CalculationCancelledError(job_id or run_id)

                completed_at = self._clock.now()
                period.mark_completed(completed_at)

        except PrerequisitesNotMetError as exc:
            logger.warning(
                "pipeline_prerequisites_failed",
                extra={"period_id": str(period_id), "errors": exc.errors},
            )
            self.fail_period(hospital_id, period_id, str(exc), run_id=run_id)
            return PipelineOutcome(
                success=False,
                hospital_id=hospital_id,
                period_id=period_id,
                errors=tuple(exc.errors),
            )

        except StageFailedError as exc:
            logger.error(
                "pipeline_failed",
                extra={
                    "period_id": str(period_id),
                    "stage": exc.stage,
                    "errors": exc.errors,
                },
            )
            self.fail_period(hospital_id, period_id, str(exc), run_id=run_id)
            return PipelineOutcome(
                success=False,
                hospital_id=hospital_id,
                period_id=period_id,
                errors=(str(exc),),
            )

        except CalculationCancelledError:
            logger.info(
                "pipeline_results_discarded",
                extra={"period_id": str(period_id), "job_id": job_id},
            )
            self.cancel_period(hospital_id, period_id, run_id=run_id)
            raise

        except Exception as exc:
            message = f"Unexpected error: {exc}"
            logger.exception(
                "pipeline_unexpected_error",
                extra={"period_id": str(period_id), "error": str(exc)},
            )
            self.fail_period(hospital_id, period_id, message, run_id=run_id)
            return PipelineOutcome(
                success=False,
                hospital_id=hospital_id,
                period_id=period_id,
                errors=(message,),
            )

        logger.info(
            "pipeline_completed",
            extra={
                "period_id": str(period_id),
                "total_allocated": str(result.stage1.total_allocated),
                "activity_total_cost": str(result.stage2.total_cost),
                "process_total_cost": str(result.stage3.total_cost),
            },
        )
        return PipelineOutcome(
            success=True,
            hospital_id=hospital_id,
            period_id=period_id,
            result=result,
            completed_at=completed_at,
            warnings=result.warnings,
        )

    # -----------------------------------------------------------------------
    # Period status helpers (own transactions)
    # -----------------------------------------------------------------------

    def fail_period(
        self,
        hospital_id: UUID,
        period_id: UUID,
        error: str,
        run_id: str | None = None,
    ) -> bool:
        """Mark the period FAILED with ``error`` in its own transaction.

        With ``run_id`` the write only happens while that run still owns the
        period.  Returns whether the status was written.
        """
        with session_scope(self._session_factory) as session:
            period = get_period(session, hospital_id, period_id, for_update=True)
            if run_id is not None and not period.is_owned_by(run_id):
                self._log_superseded(period, run_id, "failed")
                return False
            period.mark_failed(error, self._clock.now())
            return True

    def cancel_period(
        self, hospital_id: UUID, period_id: UUID, run_id: str | None = None
    ) -> bool:
        """Mark the period CANCELLED; same ownership rule as ``fail_period``."""
        with session_scope(self._session_factory) as session:
            period = get_period(session, hospital_id, period_id, for_update=True)
            if run_id is not None and not period.is_owned_by(run_id):
                self._log_superseded(period, run_id, "cancelled")
                return False
            period.mark_cancelled(self._clock.now())
            return True

    def fail_timed_out_period(
        self, hospital_id: UUID, period_id: UUID, job_id: str, error: str
    ) -> bool:
        """Fail the period of a reaped job.

        The period is failed when the job claimed it, or when the job died
        before claiming it (still PENDING).  A period owned by another run
        or already finished is left alone.
        """
        with session_scope(self._session_factory) as session:
            period = get_period(session, hospital_id, period_id, for_update=True)
            unclaimed = period.calculation_status == CalculationStatus.PENDING
            if not (unclaimed or period.is_owned_by(job_id)):
                self._log_superseded(period, job_id, "failed")
                return False
            period.mark_failed(error, self._clock.now())
            return True

    def _log_superseded(self, period, run_id: str, wanted: str) -> None:
        logger.info(
            "period_status_write_skipped",
            extra={
                "period_id": str(period.id),
                "run_id": run_id,
                "owner_run_id": period.calculation_run_id,
                "status": CalculationStatus(period.calculation_status).value,
                "wanted": wanted,
            },
        )

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _calculate(
        self, snapshot: PeriodSnapshot, progress: ProgressCallback | None
    ) -> PipelineResult:
        stage1 = self._resource_allocation.allocate(
            accounts=snapshot.account_inputs,
            mappings=snapshot.account_mappings,
            activity_ids=snapshot.activity_ids,
        )
        if not stage1.success:
            raise StageFailedError(1, stage1.errors)
        self._report(progress, 1)

        stage2 = self._activity_cost_pool.calculate(
            activity_ids=snapshot.activity_ids,
            allocated=stage1.activity_allocated,
            employees=snapshot.employees,
            work_ratios=snapshot.work_ratios,
            process_mappings=snapshot.process_mappings,
            processes=snapshot.process_inputs,
        )
        if not stage2.success:
            raise StageFailedError(2, stage2.errors)
        self._report(progress, 2)

        stage3 = self._process_assignment.assign(
            activity_totals={
                activity_id: cost.total_cost
                for activity_id, cost in stage2.activities.items()
            },
            processes=snapshot.process_inputs,
            process_mappings=snapshot.process_mappings,
            work_ratios=snapshot.work_ratios,
        )
        if not stage3.success:
            raise StageFailedError(3, stage3.errors)
        self._report(progress, 3)

        return PipelineResult(
            stage1=stage1,
            stage2=stage2,
            stage3=stage3,
            warnings=stage1.warnings,
        )

    def _report(self, progress: ProgressCallback | None, stage: int) -> None:
        logger.info(
            "pipeline_stage_completed",
            extra={"stage": stage, "progress_message": STAGE_MESSAGES[stage]},
        )
        if progress is not None:
            progress(stage, STAGE_MESSAGES[stage])

    def _write_back(self, snapshot: PeriodSnapshot, result: PipelineResult) -> None:
        places = self._decimal_places
        for activity in snapshot.activities:
            cost = result.stage2.activities[activity.id]
            for name in ACTIVITY_ENGINE_FIELDS:
                setattr(activity, name, round_money(getattr(cost, name), places))

        for process in snapshot.processes:
            cost = result.stage3.processes[process.id]
            for name in PROCESS_ENGINE_FIELDS:
                setattr(process, name, round_money(getattr(cost, name), places))
