"""
Tests for the three-stage pipeline orchestrator against a real database.

Covers the persisted results of a run, all-or-nothing rollback on stage
failure, prerequisite reporting the cancel gate and
run ownership of the period.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from costing_kernel.db.engine import session_scope
from costing_kernel.exceptions import (
    CalculationCancelledError,
    CalculationInProgressError,
    PeriodNotFoundError,
)
from costing_kernel.models import (
    AccountActivityMapping,
    Activity,
    CalculationStatus,
    Period,
    Process,
)
from costing_services.pipeline import STAGE_MESSAGES, PipelineOrchestrator


@pytest.fixture
def pipeline(session_factory, clock):
    return PipelineOrchestrator(session_factory, clock=clock)


def _get(session_factory, model, entity_id):
    with session_factory() as s:
        return s.get(model, entity_id)


def _activity_totals(session_factory, period_id):
    with session_factory() as s:
        rows = s.execute(
            select(Activity.code, Activity.total_cost).where(Activity.period_id == period_id)
        ).all()
    return {code: total for code, total in rows}


class TestSuccessfulRun:
    def test_outcome_is_successful(self, pipeline, sal):
        outcome = pipeline.run(sal["hospital_id"], sal["period_id"])

        assert outcome.success
        assert outcome.errors == ()
        assert outcome.error_message is None
        assert outcome.result.stage1.total_allocated == Decimal("100000")

    def test_activity_costs_are_persisted(self, pipeline, sal, session_factory):
        pipeline.run(sal["hospital_id"], sal["period_id"])

        x = _get(session_factory, Activity, sal["x"].id)
        y = _get(session_factory, Activity, sal["y"].id)
        assert x.allocated_cost == Decimal("60000")
        assert x.employee_cost == Decimal("0")
        assert x.total_cost == Decimal("60000")
        assert x.unit_cost == Decimal("600")
        assert y.allocated_cost == Decimal("40000")
        assert y.employee_cost == Decimal("20000")
        assert y.total_cost == Decimal("60000")
        assert y.total_hours == Decimal("400")
        assert y.average_hourly_rate == Decimal("50")
        assert y.unit_cost == Decimal("300")

    def test_process_costs_are_persisted(self, pipeline, sal, session_factory):
        pipeline.run(sal["hospital_id"], sal["period_id"])

        px = _get(session_factory, Process, sal["px"].id)
        py = _get(session_factory, Process, sal["py"].id)
        assert px.total_cost == Decimal("60000")
        assert px.unit_cost == Decimal("600")
        # (70000 - 60000) / 70000 * 100, rounded to 9 places
        assert px.profit_margin == Decimal("14.285714286")
        assert py.total_cost == Decimal("60000")
        assert py.profit_margin == Decimal("-20")

    def test_period_is_completed(self, pipeline, sal, session_factory, clock):
        pipeline.run(sal["hospital_id"], sal["period_id"])

        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.COMPLETED
        assert period.calculation_error is None
        assert period.last_calculated_at is not None

    def test_rerun_gives_identical_results(self, pipeline, sal, session_factory):
        pipeline.run(sal["hospital_id"], sal["period_id"])
        first = _activity_totals(session_factory, sal["period_id"])
        pipeline.run(sal["hospital_id"], sal["period_id"])
        second = _activity_totals(session_factory, sal["period_id"])

        assert first == second == {"X": Decimal("60000"), "Y": Decimal("60000")}

    def test_progress_reported_after_each_stage(self, pipeline, sal):
        calls = []
        pipeline.run(
            sal["hospital_id"],
            sal["period_id"],
            progress=lambda step, message: calls.append((step, message)),
        )

        assert calls == [(1, STAGE_MESSAGES[1]), (2, STAGE_MESSAGES[2]), (3, STAGE_MESSAGES[3])]

    def test_to_dict_summarizes_stages(self, pipeline, sal):
        payload = pipeline.run(sal["hospital_id"], sal["period_id"]).to_dict()

        assert payload["success"] is True
        stages = payload["stages"]
        assert stages["resource_allocation"]["accounts_allocated"] == 1
        assert Decimal(stages["resource_allocation"]["total_allocated"]) == Decimal("100000")
        assert stages["activity_cost_pool"]["activities_processed"] == 2
        assert Decimal(stages["process_assignment"]["total_cost"]) == Decimal("120000")

    def test_unmapped_indirect_account_is_reported(self, pipeline, sal):
        sal["scenario"].account("RENT", amounts=["2500"])
        sal["scenario"].commit()

        outcome = pipeline.run(sal["hospital_id"], sal["period_id"])

        assert outcome.success
        assert any("RENT" in w for w in outcome.warnings)
        stage1 = outcome.to_dict()["stages"]["resource_allocation"]
        assert stage1["unallocated_accounts"] == ["RENT"]
        assert Decimal(stage1["unallocated_total"]) == Decimal("2500")


class TestAllOrNothing:
    def test_stage_failure_keeps_previous_results(self, pipeline, sal, session, session_factory):
        pipeline.run(sal["hospital_id"], sal["period_id"])

        mapping = session.execute(
            select(AccountActivityMapping).where(
                AccountActivityMapping.activity_id == sal["y"].id
            )
        ).scalar_one()
        mapping.ratio = Decimal("0.37")
        session.commit()

        outcome = pipeline.run(sal["hospital_id"], sal["period_id"])

        assert not outcome.success
        assert "0.97" in outcome.error_message
        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.FAILED
        assert period.calculation_error.startswith("Stage 1 failed")
        assert _activity_totals(session_factory, sal["period_id"]) == {
            "X": Decimal("60000"),
            "Y": Decimal("60000"),
        }

    def test_direct_account_without_mapping_fails_the_run(self, pipeline, sal, session_factory):
        sal["scenario"].account("DRUGS", amounts=["900"], is_direct=True)
        sal["scenario"].commit()

        outcome = pipeline.run(sal["hospital_id"], sal["period_id"])

        assert not outcome.success
        assert "Direct account DRUGS has no activity mappings" in outcome.error_message
        assert _activity_totals(session_factory, sal["period_id"]) == {
            "X": Decimal("0"),
            "Y": Decimal("0"),
        }


class TestPrerequisites:
    def test_every_missing_input_is_listed(self, pipeline, scenario, session_factory):
        scenario.commit()

        outcome = pipeline.run(scenario.hospital_id, scenario.period_id)

        assert not outcome.success
        assert outcome.errors == (
            "No cost inputs found for any accounts in period 2025-Q1",
            "No account-activity mappings found for period 2025-Q1",
            "No activity-process mappings found for period 2025-Q1",
            "No employee work ratios found for period 2025-Q1",
        )
        period = _get(session_factory, Period, scenario.period_id)
        assert period.calculation_status == CalculationStatus.FAILED
        assert period.calculation_error == "; ".join(outcome.errors)

    def test_partial_data_lists_only_what_is_missing(self, pipeline, scenario):
        account = scenario.account("SAL", amounts=["100"])
        activity = scenario.activity("X")
        scenario.map_account(account, activity, "1")
        scenario.commit()

        outcome = pipeline.run(scenario.hospital_id, scenario.period_id)

        assert len(outcome.errors) == 2
        assert all("mappings" in e or "work ratios" in e for e in outcome.errors)

    def test_unknown_period_raises(self, pipeline, sal):
        with pytest.raises(PeriodNotFoundError):
            pipeline.run(sal["hospital_id"], uuid4())

    def test_period_of_another_hospital_raises(self, pipeline, sal, make_scenario):
        other = make_scenario("OTH").commit().hospital_id

        with pytest.raises(PeriodNotFoundError):
            pipeline.run(other, sal["period_id"])


class TestCancelGate:
    def test_cancel_during_run_discards_results(self, pipeline, sal, session_factory):
        answers = iter([False, True])

        with pytest.raises(CalculationCancelledError):
            pipeline.run(
                sal["hospital_id"],
                sal["period_id"],
                is_cancelled=lambda: next(answers),
                job_id="job-1",
            )

        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.CANCELLED
        assert _activity_totals(session_factory, sal["period_id"]) == {
            "X": Decimal("0"),
            "Y": Decimal("0"),
        }

    def test_not_cancelled_commits(self, pipeline, sal):
        outcome = pipeline.run(
            sal["hospital_id"], sal["period_id"], is_cancelled=lambda: False
        )

        assert outcome.success

    def test_abandoned_before_start_leaves_period_untouched(self, pipeline, sal, session_factory):
        with pytest.raises(CalculationCancelledError):
            pipeline.run(
                sal["hospital_id"],
                sal["period_id"],
                is_cancelled=lambda: True,
                job_id="job-1",
            )

        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.PENDING
        assert period.calculation_run_id is None


# =============================================================================
# Run ownership
# =============================================================================


def _claim(session_factory, clock, period_id, run_id):
    with session_scope(session_factory) as s:
        s.get(Period, period_id).mark_in_progress(clock.now(), run_id)


class TestRunOwnership:
    def test_completed_run_records_its_id(self, pipeline, sal, session_factory):
        pipeline.run(sal["hospital_id"], sal["period_id"], job_id="job-1")

        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.COMPLETED
        assert period.calculation_run_id == "job-1"

    def test_run_rejected_while_another_run_owns_the_period(
        self, pipeline, sal, session_factory, clock
    ):
        _claim(session_factory, clock, sal["period_id"], "job-other")

        with pytest.raises(CalculationInProgressError):
            pipeline.run(sal["hospital_id"], sal["period_id"], job_id="job-1")

        assert _get(session_factory, Period, sal["period_id"]).calculation_run_id == "job-other"

    def test_takeover_before_commit_discards_results(
        self, pipeline, sal, session_factory, clock
    ):
        def take_over(step, message):
            if step == 3:
                _claim(session_factory, clock, sal["period_id"], "job-newer")

        with pytest.raises(CalculationCancelledError):
            pipeline.run(
                sal["hospital_id"], sal["period_id"], progress=take_over, job_id="job-1"
            )

        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.IN_PROGRESS
        assert period.calculation_run_id == "job-newer"
        assert _activity_totals(session_factory, sal["period_id"]) == {
            "X": Decimal("0"),
            "Y": Decimal("0"),
        }

    def test_status_writes_require_ownership(self, pipeline, sal, session_factory, clock):
        _claim(session_factory, clock, sal["period_id"], "job-2")

        assert not pipeline.fail_period(sal["hospital_id"], sal["period_id"], "boom", run_id="job-1")
        assert not pipeline.cancel_period(sal["hospital_id"], sal["period_id"], run_id="job-1")
        assert _get(session_factory, Period, sal["period_id"]).is_owned_by("job-2")

        assert pipeline.fail_period(sal["hospital_id"], sal["period_id"], "boom", run_id="job-2")
        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.FAILED
        assert period.calculation_error == "boom"

    def test_skipped_write_is_logged(self, pipeline, sal, session_factory, clock, captured_logs):
        _claim(session_factory, clock, sal["period_id"], "job-2")

        pipeline.cancel_period(sal["hospital_id"], sal["period_id"], run_id="job-1")

        skipped = [r for r in captured_logs() if r["message"] == "period_status_write_skipped"]
        assert skipped[0]["owner_run_id"] == "job-2"
        assert skipped[0]["wanted"] == "cancelled"

    def test_timed_out_period_is_failed_when_unclaimed(self, pipeline, sal, session_factory):
        assert pipeline.fail_timed_out_period(
            sal["hospital_id"], sal["period_id"], "job-1", "Job timed out"
        )

        period = _get(session_factory, Period, sal["period_id"])
        assert period.calculation_status == CalculationStatus.FAILED

    def test_timed_out_period_left_alone_when_finished(self, pipeline, sal, session_factory):
        pipeline.run(sal["hospital_id"], sal["period_id"], job_id="job-2")

        assert not pipeline.fail_timed_out_period(
            sal["hospital_id"], sal["period_id"], "job-1", "Job timed out"
        )
        assert _get(session_factory, Period, sal["period_id"]).is_calculated
