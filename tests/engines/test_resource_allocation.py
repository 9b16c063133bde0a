"""
Tests for the Stage 1 resource allocation engine.

Pure engine tests: no database, plain string ids.
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from costing_engines import (
    AccountInput,
    AccountMappingInput,
    ResourceAllocationEngine,
)


def _account(code, total, is_direct=False):
    return AccountInput(
        account_id=code, code=code, is_direct=is_direct, total_cost=Decimal(total)
    )


def _map(account, activity, ratio):
    return AccountMappingInput(
        account_id=account, activity_id=activity, ratio=Decimal(ratio)
    )


class TestIndirectAllocation:
    def test_sixty_forty_split(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("SAL", "100000")],
            mappings=[_map("SAL", "X", "0.6"), _map("SAL", "Y", "0.4")],
            activity_ids=["X", "Y"],
        )

        assert result.success
        assert result.activity_allocated == {
            "X": Decimal("60000"),
            "Y": Decimal("40000"),
        }
        assert result.accounts_allocated == 1
        assert result.total_allocated == Decimal("100000")

    def test_every_activity_starts_at_zero(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("SAL", "100")],
            mappings=[_map("SAL", "X", "1")],
            activity_ids=["X", "IDLE"],
        )

        assert result.activity_allocated["IDLE"] == Decimal("0")

    def test_ratios_within_tolerance_are_accepted(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("SAL", "1000")],
            mappings=[_map("SAL", "X", "0.3333"), _map("SAL", "Y", "0.6662")],
            activity_ids=["X", "Y"],
        )

        assert result.success

    def test_ratios_summing_to_097_are_rejected(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("SAL", "1000")],
            mappings=[_map("SAL", "X", "0.5"), _map("SAL", "Y", "0.47")],
            activity_ids=["X", "Y"],
        )

        assert not result.success
        assert result.errors == ("Account SAL allocation ratios sum to 0.97, not 1.0",)
        assert result.activity_allocated == {"X": Decimal("0"), "Y": Decimal("0")}

    def test_ratios_summing_to_105_are_rejected(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("SAL", "1000")],
            mappings=[_map("SAL", "X", "0.55"), _map("SAL", "Y", "0.5")],
            activity_ids=["X", "Y"],
        )

        assert not result.success
        assert "1.05" in result.errors[0]

    def test_rejected_account_does_not_block_other_accounts(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("BAD", "1000"), _account("OK", "500")],
            mappings=[
                _map("BAD", "X", "0.5"),
                _map("OK", "X", "1"),
            ],
            activity_ids=["X"],
        )

        assert len(result.errors) == 1
        assert result.activity_allocated["X"] == Decimal("500")

    def test_custom_tolerance(self):
        engine = ResourceAllocationEngine(ratio_tolerance=Decimal("0.05"))
        result = engine.allocate(
            accounts=[_account("SAL", "1000")],
            mappings=[_map("SAL", "X", "0.97")],
            activity_ids=["X"],
        )

        assert result.success


class TestUnmappedAccounts:
    def test_indirect_without_mappings_is_a_warning(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("RENT", "2500"), _account("SAL", "100")],
            mappings=[_map("SAL", "X", "1")],
            activity_ids=["X"],
        )

        assert result.success
        assert len(result.warnings) == 1
        assert "RENT" in result.warnings[0]
        assert result.unallocated_total == Decimal("2500")
        assert [u.code for u in result.unallocated] == ["RENT"]
        assert result.total_allocated == Decimal("100")

    def test_direct_without_mappings_is_fatal(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("DRUGS", "900", is_direct=True)],
            mappings=[],
            activity_ids=["X"],
        )

        assert not result.success
        assert result.errors == ("Direct account DRUGS has no activity mappings",)


class TestDirectAllocation:
    def test_direct_account_uses_ratios_as_given(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[_account("DRUGS", "1000", is_direct=True)],
            mappings=[_map("DRUGS", "X", "0.25")],
            activity_ids=["X"],
        )

        assert result.success
        assert result.activity_allocated["X"] == Decimal("250")

    def test_amounts_accumulate_across_accounts(self):
        result = ResourceAllocationEngine().allocate(
            accounts=[
                _account("DRUGS", "1000", is_direct=True),
                _account("SAL", "300"),
            ],
            mappings=[_map("DRUGS", "X", "1"), _map("SAL", "X", "1")],
            activity_ids=["X"],
        )

        assert result.activity_allocated["X"] == Decimal("1300")
        assert result.allocations[0].allocated_amount == Decimal("1000")


class TestEngineTrace:
    def test_emits_engine_trace(self, captured_logs):
        ResourceAllocationEngine().allocate(
            accounts=[_account("SAL", "1")],
            mappings=[_map("SAL", "X", "1")],
            activity_ids=["X"],
        )

        traces = [r for r in captured_logs() if r["message"] == "ENGINE_TRACE"]
        assert traces
        assert traces[0]["engine_name"] == "resource_allocation"
        assert len(traces[0]["input_fingerprint"]) > 0


# =============================================================================
# Property: indirect accounts with ratios summing to 1 allocate exactly
# =============================================================================


@st.composite
def _split(draw):
    parts = draw(st.lists(st.integers(min_value=1, max_value=1000), min_size=1, max_size=6))
    total = sum(parts)
    ratios = [Decimal(p) / Decimal(total) for p in parts]
    # Absorb division residue in the last ratio so the sum is exactly 1
    ratios[-1] = Decimal("1") - sum(ratios[:-1], Decimal("0"))
    return ratios


@given(
    amount=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("10000000"), places=2),
    ratios=_split(),
)
@settings(max_examples=100, deadline=None)
def test_indirect_allocation_conserves_cost(amount, ratios):
    activity_ids = [f"A{i}" for i in range(len(ratios))]
    result = ResourceAllocationEngine().allocate(
        accounts=[_account("SAL", amount)],
        mappings=[_map("SAL", aid, r) for aid, r in zip(activity_ids, ratios)],
        activity_ids=activity_ids,
    )

    assert result.success
    assert abs(result.total_allocated - amount) <= Decimal("1e-18")
