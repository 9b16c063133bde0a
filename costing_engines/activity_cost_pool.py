"""
Module: costing_engines.activity_cost_pool
Responsibility:
    Stage 2 of the ABC pipeline.  Fold employee labor cost into every
    activity and derive the activity's utilization metrics.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_cost == allocated_cost + employee_cost for every activity.
    - hourly cost = hourly_rate if set, otherwise annual_salary divided by
      the annual work hours (2080 by default).
    - Every division yields zero on a zero denominator.

Failure modes:
    - A work ratio referencing an unknown employee is a fatal error.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.types import (
    ActivityCost,
    ActivityCostPoolResult,
    EmployeeInput,
    EntityId,
    ProcessInput,
    ProcessMappingInput,
    WorkRatioInput,
)
from costing_kernel.domain.numeric import (
    DEFAULT_ANNUAL_WORK_HOURS,
    ZERO,
    safe_divide,
)
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.activity_cost_pool")


class ActivityCostPoolEngine:
    """
    Build activity cost pools from Stage 1 allocations and labor.

    Contract:
        ``allocated`` is the Stage 1 per-activity allocation.  Activities
        missing from it start at zero.
    Guarantees:
        - One ActivityCost per activity id passed in.
        - unit_cost divides by the volume of the distinct processes the
          activity maps to, so a process mapped twice is counted once.
    """

    def __init__(self, annual_work_hours: Decimal = DEFAULT_ANNUAL_WORK_HOURS):
        self._annual_work_hours = annual_work_hours

    @traced_engine(
        "activity_cost_pool",
        "1.0",
        fingerprint_fields=("allocated", "work_ratios", "employees"),
    )
    def calculate(
        self,
        *,
        activity_ids: Sequence[EntityId],
        allocated: Mapping[EntityId, Decimal],
        employees: Sequence[EmployeeInput],
        work_ratios: Sequence[WorkRatioInput],
        process_mappings: Sequence[ProcessMappingInput],
        processes: Sequence[ProcessInput],
    ) -> ActivityCostPoolResult:
        employee_by_id = {e.employee_id: e for e in employees}
        volume_by_process = {p.process_id: p.volume for p in processes}

        ratios_by_activity: dict[EntityId, list[WorkRatioInput]] = defaultdict(list)
        for wr in work_ratios:
            ratios_by_activity[wr.activity_id].append(wr)

        processes_by_activity: dict[EntityId, set[EntityId]] = defaultdict(set)
        for pm in process_mappings:
            processes_by_activity[pm.activity_id].add(pm.process_id)

        errors: list[str] = []
        results: dict[EntityId, ActivityCost] = {}

        for activity_id in activity_ids:
            employee_cost = ZERO
            total_fte = ZERO
            total_hours = ZERO

            for wr in ratios_by_activity.get(activity_id, []):
                employee = employee_by_id.get(wr.employee_id)
                if employee is None:
                    errors.append(
                        f"Work ratio references unknown employee {wr.employee_id}"
                    )
                    continue
                hourly_cost = employee.hourly_cost(self._annual_work_hours)
                employee_cost += wr.hours_per_period * hourly_cost
                total_fte += wr.ratio * employee.fte
                total_hours += wr.hours_per_period

            allocated_cost = allocated.get(activity_id, ZERO)
            total_cost = allocated_cost + employee_cost

            total_volume = sum(
                (volume_by_process.get(pid, ZERO)
                 for pid in processes_by_activity.get(activity_id, ())),
                ZERO,
            )

            results[activity_id] = ActivityCost(
                activity_id=activity_id,
                allocated_cost=allocated_cost,
                employee_cost=employee_cost,
                total_cost=total_cost,
                total_fte=total_fte,
                total_hours=total_hours,
                average_hourly_rate=safe_divide(employee_cost, total_hours),
                unit_cost=safe_divide(total_cost, total_volume),
            )

        result = ActivityCostPoolResult(activities=results, errors=tuple(errors))
        logger.info(
            "stage2_completed",
            extra={
                "success": result.success,
                "activities_processed": result.activities_processed,
                "total_cost": str(result.total_cost),
            },
        )
        return result
