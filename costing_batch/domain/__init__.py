"""costing_batch.domain -- Pure job DTOs and the job state machine (ZERO I/O)."""

from costing_batch.domain.types import (
    ABC_CALCULATION,
    ABC_TOTAL_STEPS,
    ACTIVE_STATUSES,
    JOB_TRANSITIONS,
    TERMINAL_STATUSES,
    CalculationJob,
    JobAction,
    JobStatus,
    JobSummary,
    check_transition,
)

__all__ = [
    "ABC_CALCULATION",
    "ABC_TOTAL_STEPS",
    "ACTIVE_STATUSES",
    "JOB_TRANSITIONS",
    "TERMINAL_STATUSES",
    "CalculationJob",
    "JobAction",
    "JobStatus",
    "JobSummary",
    "check_transition",
]
