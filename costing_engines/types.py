"""
Module: costing_engines.types
Responsibility:
    Frozen value objects passed into and returned from the three allocation
    stages.  Engines never see ORM rows; the services layer builds these
    from a snapshot of the period and writes the results back.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every amount, ratio, hour and volume is a Decimal.
    - Identifiers are opaque (UUIDs in production, any hashable in tests).
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass
from decimal import Decimal

EntityId = Hashable

_ZERO = Decimal("0")


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class AccountInput:
    """Ledger account with its summed cost for the period."""

    account_id: EntityId
    code: str
    is_direct: bool
    total_cost: Decimal


@dataclass(frozen=True)
class AccountMappingInput:
    """Account -> Activity allocation ratio."""

    account_id: EntityId
    activity_id: EntityId
    ratio: Decimal


@dataclass(frozen=True)
class EmployeeInput:
    """Employee cost basis.  hourly_rate wins over annual_salary when set."""

    employee_id: EntityId
    hourly_rate: Decimal | None = None
    annual_salary: Decimal | None = None
    fte: Decimal = Decimal("1")

    def hourly_cost(self, annual_work_hours: Decimal) -> Decimal:
        if self.hourly_rate is not None:
            return self.hourly_rate
        if self.annual_salary is None or annual_work_hours == _ZERO:
            return _ZERO
        return self.annual_salary / annual_work_hours


@dataclass(frozen=True)
class WorkRatioInput:
    """Share of an employee's time on an activity, optionally per process."""

    employee_id: EntityId
    activity_id: EntityId
    ratio: Decimal
    hours_per_period: Decimal
    process_id: EntityId | None = None


@dataclass(frozen=True)
class ProcessInput:
    """Process with its billed volume and revenue for the period."""

    process_id: EntityId
    code: str
    volume: Decimal = _ZERO
    revenue: Decimal = _ZERO


@dataclass(frozen=True)
class ProcessMappingInput:
    """Activity -> Process mapping with its rate and optional driver."""

    activity_id: EntityId
    process_id: EntityId
    rate: Decimal
    driver_id: EntityId | None = None
    driver_type: str | None = None


# =============================================================================
# Stage 1 results
# =============================================================================


@dataclass(frozen=True)
class AllocationLine:
    """Amount one account sent to one activity."""

    activity_id: EntityId
    ratio: Decimal
    amount: Decimal


@dataclass(frozen=True)
class AccountAllocation:
    """Distribution of one account's cost across activities."""

    account_id: EntityId
    code: str
    is_direct: bool
    total_cost: Decimal
    lines: tuple[AllocationLine, ...]

    @property
    def allocated_amount(self) -> Decimal:
        return sum((line.amount for line in self.lines), _ZERO)


@dataclass(frozen=True)
class UnallocatedAccount:
    """Indirect account whose cost did not reach any activity."""

    account_id: EntityId
    code: str
    amount: Decimal


@dataclass(frozen=True)
class ResourceAllocationResult:
    """
    Outcome of Stage 1.

    Guarantees:
        - ``activity_allocated`` has an entry (possibly zero) for every
          activity passed in.
        - ``success`` is True iff ``errors`` is empty.
    """

    activity_allocated: dict[EntityId, Decimal]
    allocations: tuple[AccountAllocation, ...]
    unallocated: tuple[UnallocatedAccount, ...]
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def accounts_allocated(self) -> int:
        return len(self.allocations)

    @property
    def total_allocated(self) -> Decimal:
        return sum(self.activity_allocated.values(), _ZERO)

    @property
    def unallocated_total(self) -> Decimal:
        return sum((u.amount for u in self.unallocated), _ZERO)


# =============================================================================
# Stage 2 results
# =============================================================================


@dataclass(frozen=True)
class ActivityCost:
    """Computed cost pool and utilization metrics for one activity."""

    activity_id: EntityId
    allocated_cost: Decimal
    employee_cost: Decimal
    total_cost: Decimal
    total_fte: Decimal
    total_hours: Decimal
    average_hourly_rate: Decimal
    unit_cost: Decimal


@dataclass(frozen=True)
class ActivityCostPoolResult:
    """Outcome of Stage 2."""

    activities: dict[EntityId, ActivityCost]
    errors: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def activities_processed(self) -> int:
        return sum(1 for a in self.activities.values() if a.total_cost != _ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((a.total_cost for a in self.activities.values()), _ZERO)


# =============================================================================
# Stage 3 results
# =============================================================================


@dataclass(frozen=True)
class ProcessAssignmentLine:
    """Amount one activity sent to one process."""

    activity_id: EntityId
    process_id: EntityId
    driver_type: str
    amount: Decimal


@dataclass(frozen=True)
class ProcessCost:
    """Computed cost and profitability for one process."""

    process_id: EntityId
    allocated_cost: Decimal
    total_cost: Decimal
    unit_cost: Decimal
    profit_margin: Decimal


@dataclass(frozen=True)
class ProcessAssignmentResult:
    """Outcome of Stage 3."""

    processes: dict[EntityId, ProcessCost]
    assignments: tuple[ProcessAssignmentLine, ...]
    skipped_activities: tuple[EntityId, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def processes_processed(self) -> int:
        return sum(1 for p in self.processes.values() if p.total_cost != _ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((p.total_cost for p in self.processes.values()), _ZERO)


@dataclass(frozen=True)
class PipelineResult:
    """All three stage results of one successful in-memory run."""

    stage1: ResourceAllocationResult
    stage2: ActivityCostPoolResult
    stage3: ProcessAssignmentResult
    warnings: tuple[str, ...] = ()
