"""
Module: costing_engines.resource_allocation
Responsibility:
    Stage 1 of the ABC pipeline.  Distribute each ledger account's total
    cost to activities according to its account -> activity ratios.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel/domain and sibling engine modules.

Invariants enforced:
    - Every activity's allocated cost starts from zero on each run.
    - An indirect account whose ratios sum to 1.0 (within tolerance)
      allocates exactly its total cost.  Ratios are never auto-corrected.
    - An indirect account with no mappings is a warning, not an error; its
      cost is reported as unallocated.

Failure modes:
    - "Direct account CODE has no activity mappings" (fatal).
    - "Account CODE allocation ratios sum to X, not 1.0" (fatal, the
      account is skipped and the remaining accounts are still processed so
      every bad account is reported).

Usage:
    from costing_engines.resource_allocation import ResourceAllocationEngine

    result = ResourceAllocationEngine().allocate(
        accounts=accounts,
        mappings=mappings,
        activity_ids=activity_ids,
    )
    if not result.success:
        raise StageFailedError(1, result.errors)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.types import (
    AccountAllocation,
    AccountInput,
    AccountMappingInput,
    AllocationLine,
    EntityId,
    ResourceAllocationResult,
    UnallocatedAccount,
)
from costing_kernel.domain.numeric import (
    DEFAULT_RATIO_TOLERANCE,
    ZERO,
    ratio_total_within_tolerance,
)
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.resource_allocation")


class ResourceAllocationEngine:
    """
    Allocate account costs to activities.

    Contract:
        Pure function of its inputs.  Direct accounts are processed before
        indirect accounts; the order only affects log output because
        allocation is additive per activity.
    Guarantees:
        - Sum of ``activity_allocated`` equals the sum of all allocation
          line amounts.
    Non-goals:
        - Does not round; rounding to stored precision happens at persist.
    """

    def __init__(self, ratio_tolerance: Decimal = DEFAULT_RATIO_TOLERANCE):
        self._ratio_tolerance = ratio_tolerance

    @traced_engine(
        "resource_allocation", "1.0", fingerprint_fields=("accounts", "mappings")
    )
    def allocate(
        self,
        *,
        accounts: Sequence[AccountInput],
        mappings: Sequence[AccountMappingInput],
        activity_ids: Iterable[EntityId],
    ) -> ResourceAllocationResult:
        allocated: dict[EntityId, Decimal] = {aid: ZERO for aid in activity_ids}

        by_account: dict[EntityId, list[AccountMappingInput]] = defaultdict(list)
        for mapping in mappings:
            by_account[mapping.account_id].append(mapping)

        allocations: list[AccountAllocation] = []
        unallocated: list[UnallocatedAccount] = []
        errors: list[str] = []
        warnings: list[str] = []

        direct = [a for a in accounts if a.is_direct]
        indirect = [a for a in accounts if not a.is_direct]

        for account in direct:
            account_mappings = by_account.get(account.account_id, [])
            if not account_mappings:
                errors.append(f"Direct account {account.code} has no activity mappings")
                logger.error(
                    "stage1_direct_account_unmapped",
                    extra={"account_code": account.code},
                )
                continue
            allocations.append(self._distribute(account, account_mappings, allocated))

        for account in indirect:
            account_mappings = by_account.get(account.account_id, [])
            if not account_mappings:
                warnings.append(
                    f"Indirect account {account.code} has no activity mappings - "
                    "cost remains unallocated"
                )
                unallocated.append(
                    UnallocatedAccount(
                        account_id=account.account_id,
                        code=account.code,
                        amount=account.total_cost,
                    )
                )
                logger.warning(
                    "stage1_unallocated_account",
                    extra={
                        "account_code": account.code,
                        "amount": str(account.total_cost),
                    },
                )
                continue

            ok, total_ratio = ratio_total_within_tolerance(
                (m.ratio for m in account_mappings), self._ratio_tolerance
            )
            if not ok:
                errors.append(
                    f"Account {account.code} allocation ratios sum to "
                    f"{total_ratio}, not 1.0"
                )
                logger.error(
                    "stage1_ratio_sum_invalid",
                    extra={
                        "account_code": account.code,
                        "ratio_total": str(total_ratio),
                    },
                )
                continue
            allocations.append(self._distribute(account, account_mappings, allocated))

        result = ResourceAllocationResult(
            activity_allocated=allocated,
            allocations=tuple(allocations),
            unallocated=tuple(unallocated),
            errors=tuple(errors),
            warnings=tuple(warnings),
        )
        logger.info(
            "stage1_completed",
            extra={
                "success": result.success,
                "accounts_allocated": result.accounts_allocated,
                "total_allocated": str(result.total_allocated),
                "unallocated_total": str(result.unallocated_total),
                "error_count": len(errors),
            },
        )
        return result

    def _distribute(
        self,
        account: AccountInput,
        account_mappings: Sequence[AccountMappingInput],
        allocated: dict[EntityId, Decimal],
    ) -> AccountAllocation:
        lines: list[AllocationLine] = []
        for mapping in account_mappings:
            amount = account.total_cost * mapping.ratio
            allocated[mapping.activity_id] = (
                allocated.get(mapping.activity_id, ZERO) + amount
            )
            lines.append(
                AllocationLine(
                    activity_id=mapping.activity_id,
                    ratio=mapping.ratio,
                    amount=amount,
                )
            )
            logger.debug(
                "stage1_direct_allocation" if account.is_direct
                else "stage1_indirect_allocation",
                extra={
                    "account_code": account.code,
                    "activity_id": str(mapping.activity_id),
                    "ratio": str(mapping.ratio),
                    "amount": str(amount),
                },
            )
        return AccountAllocation(
            account_id=account.account_id,
            code=account.code,
            is_direct=account.is_direct,
            total_cost=account.total_cost,
            lines=tuple(lines),
        )
