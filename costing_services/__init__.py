"""
costing_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure calculation engines
    (costing_engines/) with database sessions, the job tracker and
    wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        costing_services/ -> costing_engines/  (allowed)
        costing_services/ -> costing_kernel/   (allowed)
        costing_engines/  -> costing_services/ (FORBIDDEN)
        costing_kernel/   -> costing_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: costing_kernel and costing_engines never import from
      this package.
    - DI transparency: services receive their session factory, clock and
      settings; CostingOrchestrator in costing_batch wires them.
"""

from costing_kernel.logging_config import get_logger

logger = get_logger("services")

from costing_services.calculation_service import (
    CalculationService,
    estimate_seconds,
    job_view,
    stage_progress,
)
from costing_services.pipeline import (
    PipelineOrchestrator,
    PipelineOutcome,
    check_prerequisites,
)
from costing_services.results_service import ResultsService, jsonable
from costing_services.snapshot import PeriodSnapshot, get_period, load_period_snapshot

__all__ = [
    "CalculationService",
    "PeriodSnapshot",
    "PipelineOrchestrator",
    "PipelineOutcome",
    "ResultsService",
    "check_prerequisites",
    "estimate_seconds",
    "get_period",
    "job_view",
    "jsonable",
    "load_period_snapshot",
    "stage_progress",
]
