"""
costing_batch.domain.types -- Pure frozen dataclasses and the job state machine.

ZERO I/O.  Frozen dataclasses with enum status fields, following the
batch DTO pattern: the ORM model converts to ``CalculationJob`` with
``to_dto()`` and every query returns DTOs.

State machine:

    pending ──> running ──> completed
       │           │──────> failed
       │           └──────> cancelled
       ├──────────────────> failed
       └──────────────────> cancelled

    Action           | Allowed from        | Target status
    -----------------|---------------------|--------------
    mark_started     | pending             | running
    update_progress  | running             | (unchanged)
    mark_completed   | running             | completed
    mark_failed      | pending, running    | failed
    mark_cancelled   | pending, running    | cancelled

Invariants enforced:
    - Terminal statuses (completed, failed, cancelled) are irreversible.
    - Every mutator consults JOB_TRANSITIONS; anything else raises
      InvalidJobTransitionError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from costing_kernel.exceptions import InvalidJobTransitionError

ABC_CALCULATION = "abc_calculation"

# Stage 1, Stage 2, Stage 3
ABC_TOTAL_STEPS = 3


# =============================================================================
# Status enums
# =============================================================================


class JobStatus(str, Enum):
    """Job-level lifecycle status."""

    PENDING = "pending"  # Queued, not yet picked up by a worker
    RUNNING = "running"  # Worker is executing the pipeline
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"  # Cancelled before or during execution


class JobAction(str, Enum):
    """Tracker mutators subject to the transition table."""

    START = "mark_started"
    UPDATE_PROGRESS = "update_progress"
    COMPLETE = "mark_completed"
    FAIL = "mark_failed"
    CANCEL = "mark_cancelled"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.PENDING, JobStatus.RUNNING}
)

# action -> statuses it may be applied from
JOB_TRANSITIONS: dict[JobAction, frozenset[JobStatus]] = {
    JobAction.START: frozenset({JobStatus.PENDING}),
    JobAction.UPDATE_PROGRESS: frozenset({JobStatus.RUNNING}),
    JobAction.COMPLETE: frozenset({JobStatus.RUNNING}),
    JobAction.FAIL: frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
    JobAction.CANCEL: frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
}

# action -> resulting status (None = unchanged)
JOB_ACTION_TARGETS: dict[JobAction, JobStatus | None] = {
    JobAction.START: JobStatus.RUNNING,
    JobAction.UPDATE_PROGRESS: None,
    JobAction.COMPLETE: JobStatus.COMPLETED,
    JobAction.FAIL: JobStatus.FAILED,
    JobAction.CANCEL: JobStatus.CANCELLED,
}


def is_transition_allowed(action: JobAction, current: JobStatus | str) -> bool:
    return JobStatus(current) in JOB_TRANSITIONS[action]


def check_transition(
    job_id: str, action: JobAction, current: JobStatus | str
) -> JobStatus:
    """Validate ``action`` from ``current`` and return the resulting status.

    Raises:
        InvalidJobTransitionError: If the table does not allow the action.
    """
    status = JobStatus(current)
    if status not in JOB_TRANSITIONS[action]:
        raise InvalidJobTransitionError(job_id, action.value, status.value)
    target = JOB_ACTION_TARGETS[action]
    return target if target is not None else status


# =============================================================================
# Progress arithmetic
# =============================================================================

_CENT = Decimal("0.01")


def progress_percentage(
    status: JobStatus | str, completed_steps: int, total_steps: int
) -> Decimal:
    """100 when completed, 0 when pending, else the step ratio to 2 places."""
    if total_steps <= 0:
        return Decimal("0")
    status = JobStatus(status)
    if status == JobStatus.COMPLETED:
        return Decimal("100")
    if status == JobStatus.PENDING:
        return Decimal("0")
    ratio = Decimal(completed_steps) / Decimal(total_steps) * Decimal("100")
    return ratio.quantize(_CENT, rounding=ROUND_HALF_UP)


def estimated_remaining_seconds(
    status: JobStatus | str,
    started_at: datetime | None,
    completed_steps: int,
    total_steps: int,
    now: datetime,
) -> float | None:
    """Linear extrapolation of the remaining run time.

    None when the job has not started or no step has completed yet.
    """
    if JobStatus(status) == JobStatus.COMPLETED:
        return 0.0
    if started_at is None or total_steps <= 0 or completed_steps <= 0:
        return None
    elapsed = (now - started_at).total_seconds()
    per_step = elapsed / completed_steps
    return max(total_steps - completed_steps, 0) * per_step


# =============================================================================
# Job DTO
# =============================================================================


@dataclass(frozen=True)
class CalculationJob:
    """Immutable snapshot of a calculation job."""

    job_id: str
    job_type: str
    status: JobStatus
    hospital_id: UUID
    period_id: UUID | None = None
    requested_by: UUID | None = None
    total_steps: int = ABC_TOTAL_STEPS
    completed_steps: int = 0
    progress_message: str | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self.status in JOB_TRANSITIONS[JobAction.CANCEL]

    @property
    def progress_percentage(self) -> Decimal:
        return progress_percentage(self.status, self.completed_steps, self.total_steps)

    @property
    def duration(self) -> float | None:
        """Seconds between start and completion, None until both are set."""
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def estimated_remaining_time(self, now: datetime) -> float | None:
        return estimated_remaining_seconds(
            self.status,
            self.started_at,
            self.completed_steps,
            self.total_steps,
            now,
        )


@dataclass(frozen=True)
class JobSummary:
    """Hospital-wide job counts and the most recent jobs."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    recent: tuple[CalculationJob, ...] = field(default_factory=tuple)
