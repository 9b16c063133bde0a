"""
Module: costing_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines of the
    three-stage ABC pipeline.  This is the canonical import surface for
    costing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel/domain and costing_kernel.logging_config.
    MUST NOT import costing_services or costing_batch.

Invariants enforced:
    - Purity: engines never touch the database or the clock.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from costing_engines import (
        ResourceAllocationEngine,
        ActivityCostPoolEngine,
        ProcessAssignmentEngine,
    )
"""

from costing_engines.activity_cost_pool import ActivityCostPoolEngine
from costing_engines.driver_strategies import (
    STRATEGIES,
    AssignmentContext,
    DirectRateStrategy,
    DriverStrategy,
    ResourceDriverStrategy,
    TimeDriverStrategy,
    VolumeDriverStrategy,
    strategy_for,
)
from costing_engines.process_assignment import ProcessAssignmentEngine
from costing_engines.resource_allocation import ResourceAllocationEngine
from costing_engines.tracer import compute_input_fingerprint, traced_engine
from costing_engines.types import (
    AccountAllocation,
    AccountInput,
    AccountMappingInput,
    ActivityCost,
    ActivityCostPoolResult,
    AllocationLine,
    EmployeeInput,
    PipelineResult,
    ProcessAssignmentLine,
    ProcessAssignmentResult,
    ProcessCost,
    ProcessInput,
    ProcessMappingInput,
    ResourceAllocationResult,
    UnallocatedAccount,
    WorkRatioInput,
)

__all__ = [
    "ResourceAllocationEngine",
    "ActivityCostPoolEngine",
    "ProcessAssignmentEngine",
    "AssignmentContext",
    "DriverStrategy",
    "DirectRateStrategy",
    "VolumeDriverStrategy",
    "TimeDriverStrategy",
    "ResourceDriverStrategy",
    "STRATEGIES",
    "strategy_for",
    "traced_engine",
    "compute_input_fingerprint",
    "AccountInput",
    "AccountMappingInput",
    "EmployeeInput",
    "WorkRatioInput",
    "ProcessInput",
    "ProcessMappingInput",
    "AllocationLine",
    "AccountAllocation",
    "UnallocatedAccount",
    "ResourceAllocationResult",
    "ActivityCost",
    "ActivityCostPoolResult",
    "ProcessAssignmentLine",
    "ProcessCost",
    "ProcessAssignmentResult",
    "PipelineResult",
]
