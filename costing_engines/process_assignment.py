"""
Module: costing_engines.process_assignment
Responsibility:
    Stage 3 of the ABC pipeline.  Assign each activity's total cost to the
    processes it feeds using driver strategies, then derive per-process
    unit cost and profit margin.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every process's allocated/total/unit cost starts from zero.
    - Activities with total_cost <= 0 are skipped (logged).
    - Sum of process total_cost never exceeds sum of activity total_cost
      when each activity's outgoing shares sum to at most 1.0.
    - unit_cost = total_cost / volume; profit_margin =
      (revenue - total_cost) / revenue * 100.  Both are zero when the
      denominator is zero.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal

from costing_engines.driver_strategies import AssignmentContext, strategy_for
from costing_engines.tracer import traced_engine
from costing_engines.types import (
    EntityId,
    ProcessAssignmentLine,
    ProcessAssignmentResult,
    ProcessCost,
    ProcessInput,
    ProcessMappingInput,
    WorkRatioInput,
)
from costing_kernel.domain.numeric import HUNDRED, ZERO, safe_divide
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.process_assignment")


class ProcessAssignmentEngine:
    """
    Assign activity costs to processes.

    Contract:
        ``activity_totals`` holds the Stage 2 total cost per activity.
        Mappings whose activity is missing from it are treated as zero-cost.
    Guarantees:
        - One ProcessCost per process passed in.
        - Accumulation is additive per process, so mapping order does not
          change the result.
    """

    @traced_engine(
        "process_assignment",
        "1.0",
        fingerprint_fields=("activity_totals", "process_mappings"),
    )
    def assign(
        self,
        *,
        activity_totals: Mapping[EntityId, Decimal],
        processes: Sequence[ProcessInput],
        process_mappings: Sequence[ProcessMappingInput],
        work_ratios: Sequence[WorkRatioInput] = (),
    ) -> ProcessAssignmentResult:
        context = AssignmentContext.build(
            process_mappings=process_mappings,
            processes=processes,
            work_ratios=work_ratios,
        )

        allocated: dict[EntityId, Decimal] = {p.process_id: ZERO for p in processes}
        assignments: list[ProcessAssignmentLine] = []
        skipped: list[EntityId] = []

        for mapping in process_mappings:
            activity_total = activity_totals.get(mapping.activity_id, ZERO)
            if activity_total <= ZERO:
                if mapping.activity_id not in skipped:
                    skipped.append(mapping.activity_id)
                    logger.warning(
                        "stage3_activity_without_cost",
                        extra={"activity_id": str(mapping.activity_id)},
                    )
                continue

            strategy = strategy_for(mapping)
            amount = strategy.allocate(mapping, activity_total, context)
            allocated[mapping.process_id] = allocated.get(mapping.process_id, ZERO) + amount
            assignments.append(
                ProcessAssignmentLine(
                    activity_id=mapping.activity_id,
                    process_id=mapping.process_id,
                    driver_type=strategy.name,
                    amount=amount,
                )
            )
            logger.debug(
                "stage3_process_allocation",
                extra={
                    "activity_id": str(mapping.activity_id),
                    "process_id": str(mapping.process_id),
                    "driver": strategy.name,
                    "amount": str(amount),
                },
            )

        processes_by_id = {p.process_id: p for p in processes}
        results: dict[EntityId, ProcessCost] = {}
        for process_id, total_cost in allocated.items():
            process = processes_by_id.get(process_id)
            volume = process.volume if process is not None else ZERO
            revenue = process.revenue if process is not None else ZERO
            profit_margin = (
                safe_divide(revenue - total_cost, revenue) * HUNDRED
                if revenue > ZERO
                else ZERO
            )
            results[process_id] = ProcessCost(
                process_id=process_id,
                allocated_cost=total_cost,
                total_cost=total_cost,
                unit_cost=safe_divide(total_cost, volume),
                profit_margin=profit_margin,
            )

        result = ProcessAssignmentResult(
            processes=results,
            assignments=tuple(assignments),
            skipped_activities=tuple(skipped),
        )
        logger.info(
            "stage3_completed",
            extra={
                "processes_processed": result.processes_processed,
                "total_cost": str(result.total_cost),
                "skipped_activities": len(skipped),
            },
        )
        return result
