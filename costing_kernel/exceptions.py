"""
Typed Exception Hierarchy for the Costing Kernel.

Every error has a typed class (catch by type, not message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes.

    CostingKernelError (base)
    |
    +-- PeriodError
    |   +-- PeriodNotFoundError
    |   +-- CalculationInProgressError
    |   +-- CalculationNotCompletedError
    |
    +-- AllocationError
    |   +-- PrerequisitesNotMetError
    |   +-- StageFailedError
    |   +-- MappingRatioError
    |   +-- CalculationCancelledError
    |
    +-- JobError
    |   +-- JobNotFoundError
    |   +-- InvalidJobTransitionError
    |   +-- JobNotCancellableError
    |
    +-- ImmutabilityError
        +-- EngineFieldWriteError

Category    | Code                        | When Raised
------------|-----------------------------|------------------------------------------
Period      | PERIOD_NOT_FOUND            | Period id unknown for the hospital
            | CALCULATION_IN_PROGRESS     | Trigger while a run is active (conflict)
            | CALCULATION_NOT_COMPLETED   | Results requested before completion
------------|-----------------------------|------------------------------------------
Allocation  | PREREQUISITES_NOT_MET       | Missing cost data / mappings / work ratios
            | STAGE_FAILED                | A pipeline stage recorded fatal errors
            | MAPPING_RATIO_INVALID       | Mapping ratio outside (0, 1] or sum > 1
            | CALCULATION_CANCELLED       | Job cancelled before results were committed
------------|-----------------------------|------------------------------------------
Job         | JOB_NOT_FOUND               | Job id unknown for the hospital
            | INVALID_JOB_TRANSITION      | Mutator called from a disallowed status
            | JOB_NOT_CANCELLABLE         | Cancel on a terminal job (unprocessable)
------------|-----------------------------|------------------------------------------
Immutability| ENGINE_FIELD_WRITE          | Engine-owned field written outside engine
"""


class CostingKernelError(Exception):
    """
    Base exception for all costing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COSTING_KERNEL_ERROR"


# Period-related exceptions


class PeriodError(CostingKernelError):
    """Base exception for period-related errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """Period does not exist or does not belong to the hospital."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str, hospital_id: str | None = None):
        self.period_id = period_id
        self.hospital_id = hospital_id
        super().__init__(f"Period not found: {period_id}")


class CalculationInProgressError(PeriodError):
    """A calculation is already running (or queued) for the period."""

    code: str = "CALCULATION_IN_PROGRESS"

    def __init__(self, period_id: str, active_job_id: str | None = None):
        self.period_id = period_id
        self.active_job_id = active_job_id
        super().__init__(
            f"Calculation already in progress for period {period_id}"
        )


class CalculationNotCompletedError(PeriodError):
    """Results were requested for a period whose calculation is not completed."""

    code: str = "CALCULATION_NOT_COMPLETED"

    def __init__(self, period_id: str, calculation_status: str):
        self.period_id = period_id
        self.calculation_status = calculation_status
        super().__init__(
            f"Calculation not completed yet for period {period_id} "
            f"(status: {calculation_status})"
        )


# Allocation-related exceptions


class AllocationError(CostingKernelError):
    """Base exception for allocation pipeline errors."""

    code: str = "ALLOCATION_ERROR"


class PrerequisitesNotMetError(AllocationError):
    """One or more pipeline prerequisites are missing; nothing was mutated."""

    code: str = "PREREQUISITES_NOT_MET"

    def __init__(self, period_id: str, errors: list[str]):
        self.period_id = period_id
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class StageFailedError(AllocationError):
    """A pipeline stage recorded fatal errors; the whole run is aborted."""

    code: str = "STAGE_FAILED"

    def __init__(self, stage: int, errors: list[str] | tuple[str, ...]):
        self.stage = stage
        self.errors = list(errors)
        super().__init__(f"Stage {stage} failed: {', '.join(self.errors)}")


class MappingRatioError(AllocationError):
    """Account-activity mapping ratio is out of range or over-allocates."""

    code: str = "MAPPING_RATIO_INVALID"

    def __init__(self, account_id: str, ratio: str, reason: str):
        self.account_id = account_id
        self.ratio = ratio
        self.reason = reason
        super().__init__(
            f"Invalid mapping ratio {ratio} for account {account_id}: {reason}"
        )


class CalculationCancelledError(AllocationError):
    """The owning job was cancelled; computed results are discarded."""

    code: str = "CALCULATION_CANCELLED"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Calculation job {job_id} was cancelled")


# Job-related exceptions


class JobError(CostingKernelError):
    """Base exception for calculation job errors."""

    code: str = "JOB_ERROR"


class JobNotFoundError(JobError):
    """Job does not exist or does not belong to the hospital."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidJobTransitionError(JobError):
    """A job mutator was called from a status that does not allow it."""

    code: str = "INVALID_JOB_TRANSITION"

    def __init__(self, job_id: str, action: str, current_status: str):
        self.job_id = job_id
        self.action = action
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} job {job_id} in status {current_status}"
        )


class JobNotCancellableError(JobError):
    """Cancel requested for a job that has already finished."""

    code: str = "JOB_NOT_CANCELLABLE"

    def __init__(self, job_id: str, current_status: str):
        self.job_id = job_id
        self.current_status = current_status
        super().__init__(
            f"Job {job_id} cannot be cancelled - it is already {current_status}"
        )


# Immutability-related exceptions


class ImmutabilityError(CostingKernelError):
    """Base exception for write-protection violations."""

    code: str = "IMMUTABILITY_ERROR"


class EngineFieldWriteError(ImmutabilityError):
    """An engine-owned computed field was written outside the engine."""

    code: str = "ENGINE_FIELD_WRITE"

    def __init__(self, entity_type: str, entity_id: str, field: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field = field
        super().__init__(
            f"Field '{field}' on {entity_type} {entity_id} is computed by the "
            "allocation engine and cannot be written directly"
        )
