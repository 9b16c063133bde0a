"""
Module: costing_engines.driver_strategies
Responsibility:
    Driver-based strategies that decide how much of an activity's total
    cost one activity -> process mapping receives in Stage 3.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Strategy selection:

    driver_type   | Strategy                 | Amount
    --------------|--------------------------|----------------------------------------
    (no driver)   | DirectRateStrategy       | total_cost * rate
    volume        | VolumeDriverStrategy     | total_cost * vol(P) / sum vol over (A, D)
    time          | TimeDriverStrategy       | total_cost * hours(A, P) / hours(A)
    resource      | ResourceDriverStrategy   | total_cost * rate
    anything else | DirectRateStrategy       | total_cost * rate

Invariants enforced:
    - A zero denominator gives a zero amount, never an exception.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from costing_engines.types import (
    EntityId,
    ProcessInput,
    ProcessMappingInput,
    WorkRatioInput,
)
from costing_kernel.domain.numeric import ZERO, safe_divide

DIRECT = "direct"
VOLUME = "volume"
TIME = "time"
RESOURCE = "resource"


@dataclass(frozen=True)
class AssignmentContext:
    """
    Period-wide lookups shared by every strategy call.

    Built once per Stage 3 run with ``AssignmentContext.build``.
    """

    process_volume: dict[EntityId, Decimal]
    # (activity_id, driver_id) -> sum of process volumes across those mappings
    driver_volume: dict[tuple[EntityId, EntityId | None], Decimal]
    activity_hours: dict[EntityId, Decimal]
    activity_process_hours: dict[tuple[EntityId, EntityId], Decimal]

    @classmethod
    def build(
        cls,
        *,
        process_mappings: Sequence[ProcessMappingInput],
        processes: Sequence[ProcessInput],
        work_ratios: Sequence[WorkRatioInput],
    ) -> AssignmentContext:
        process_volume = {p.process_id: p.volume for p in processes}

        driver_volume: dict[tuple[EntityId, EntityId | None], Decimal] = defaultdict(
            lambda: ZERO
        )
        for pm in process_mappings:
            key = (pm.activity_id, pm.driver_id)
            driver_volume[key] += process_volume.get(pm.process_id, ZERO)

        activity_hours: dict[EntityId, Decimal] = defaultdict(lambda: ZERO)
        activity_process_hours: dict[tuple[EntityId, EntityId], Decimal] = defaultdict(
            lambda: ZERO
        )
        for wr in work_ratios:
            activity_hours[wr.activity_id] += wr.hours_per_period
            if wr.process_id is not None:
                activity_process_hours[(wr.activity_id, wr.process_id)] += (
                    wr.hours_per_period
                )

        return cls(
            process_volume=process_volume,
            driver_volume=dict(driver_volume),
            activity_hours=dict(activity_hours),
            activity_process_hours=dict(activity_process_hours),
        )


@runtime_checkable
class DriverStrategy(Protocol):
    """
    Protocol for Stage 3 allocation strategies.

    Each strategy is stateless and deterministic: the same mapping, activity
    cost and context always produce the same amount.
    """

    name: str

    def allocate(
        self,
        mapping: ProcessMappingInput,
        activity_total: Decimal,
        context: AssignmentContext,
    ) -> Decimal:
        """Amount of ``activity_total`` assigned to ``mapping.process_id``."""
        ...


class DirectRateStrategy:
    """Fixed share: the mapping's rate applied to the activity cost."""

    name = DIRECT

    def allocate(
        self,
        mapping: ProcessMappingInput,
        activity_total: Decimal,
        context: AssignmentContext,
    ) -> Decimal:
        return activity_total * mapping.rate


class VolumeDriverStrategy:
    """Share of billed volume among the mappings of the same activity and driver."""

    name = VOLUME

    def allocate(
        self,
        mapping: ProcessMappingInput,
        activity_total: Decimal,
        context: AssignmentContext,
    ) -> Decimal:
        total = context.driver_volume.get((mapping.activity_id, mapping.driver_id), ZERO)
        if total == ZERO:
            return ZERO
        volume = context.process_volume.get(mapping.process_id, ZERO)
        return activity_total * safe_divide(volume, total)


class TimeDriverStrategy:
    """Share of the activity's staff hours tagged to the process."""

    name = TIME

    def allocate(
        self,
        mapping: ProcessMappingInput,
        activity_total: Decimal,
        context: AssignmentContext,
    ) -> Decimal:
        total = context.activity_hours.get(mapping.activity_id, ZERO)
        if total == ZERO:
            return ZERO
        hours = context.activity_process_hours.get(
            (mapping.activity_id, mapping.process_id), ZERO
        )
        return activity_total * safe_divide(hours, total)


class ResourceDriverStrategy:
    """Predefined resource consumption rate applied to the activity cost."""

    name = RESOURCE

    def allocate(
        self,
        mapping: ProcessMappingInput,
        activity_total: Decimal,
        context: AssignmentContext,
    ) -> Decimal:
        return activity_total * mapping.rate


_DIRECT = DirectRateStrategy()

STRATEGIES: dict[str, DriverStrategy] = {
    VOLUME: VolumeDriverStrategy(),
    TIME: TimeDriverStrategy(),
    RESOURCE: ResourceDriverStrategy(),
}


def strategy_for(mapping: ProcessMappingInput) -> DriverStrategy:
    """Select the strategy for a mapping; unknown driver types use the fixed rate."""
    if mapping.driver_id is None and mapping.driver_type is None:
        return _DIRECT
    return STRATEGIES.get((mapping.driver_type or "").lower(), _DIRECT)
