"""
Tests for the calculation API: trigger, status, cancel and stale reaping.

Jobs are run synchronously through the orchestrator where a full run is
needed; dispatch through the worker pool is covered in the batch tests.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from costing_batch.domain.types import JobStatus
from costing_batch.orchestrator import CostingOrchestrator
from costing_batch.services.tracker import JobTracker
from costing_config.schema import EngineSettings
from costing_kernel.db.engine import session_scope
from costing_kernel.exceptions import (
    CalculationInProgressError,
    CalculationNotCompletedError,
    JobNotCancellableError,
    JobNotFoundError,
    PeriodNotFoundError,
)
from costing_kernel.models import CalculationStatus, Period
from costing_services.calculation_service import (
    QUEUED_MESSAGE,
    estimate_seconds,
    job_view,
    stage_progress,
)


@pytest.fixture
def orchestrator(session_factory, clock):
    return CostingOrchestrator(session_factory, clock=clock)


@pytest.fixture
def service(orchestrator):
    return orchestrator.calculations


def _period(session_factory, period_id):
    with session_factory() as s:
        return s.get(Period, period_id)


# =============================================================================
# Pure helpers
# =============================================================================


class TestEstimate:
    def test_base_overhead_only(self):
        estimate = estimate_seconds(0, 0, 0, 0)

        assert estimate["estimated_seconds"] == 30
        assert estimate["estimated_minutes"] == 0.5

    def test_per_entity_cost(self):
        estimate = estimate_seconds(accounts=100, activities=50, processes=20, mappings=200)

        # 30 + 10 + 10 + 2 + 10
        assert estimate["estimated_seconds"] == 62
        assert estimate["estimated_minutes"] == 1.0
        assert estimate["factors"] == {
            "accounts": 100,
            "activities": 50,
            "processes": 20,
            "mappings": 200,
        }


class TestStageProgress:
    @pytest.mark.parametrize(
        "status, completed, percentage",
        [
            (CalculationStatus.PENDING, 0, Decimal("0.00")),
            (CalculationStatus.IN_PROGRESS, 1, Decimal("33.33")),
            (CalculationStatus.COMPLETED, 3, Decimal("100.00")),
            (CalculationStatus.FAILED, 0, Decimal("0.00")),
            ("cancelled", 0, Decimal("0.00")),
        ],
    )
    def test_derived_from_status(self, status, completed, percentage):
        progress = stage_progress(status)

        assert progress["total_stages"] == 3
        assert progress["completed_stages"] == completed
        assert progress["percentage"] == percentage


# =============================================================================
# Trigger
# =============================================================================


class TestTrigger:
    def test_queues_a_pending_job(self, service, sal, session_factory):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])

        assert ticket["status"] == "queued"
        assert ticket["message"] == "ABC calculation has been queued for background processing"
        status = service.job_status(sal["hospital_id"], ticket["job_id"])
        assert status["status"] == "pending"
        assert status["progress"]["message"] == QUEUED_MESSAGE
        assert status["progress"]["percentage"] == Decimal("0")
        assert status["period"]["calculation_status"] == "pending"

    def test_estimate_counts_period_data(self, service, sal):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])

        # 30 + 1 * 0.1 + 2 * 0.2 + 2 * 0.1 + 4 * 0.05 = 30.9
        estimate = ticket["estimated_duration"]
        assert estimate["estimated_seconds"] == 31
        assert estimate["factors"] == {
            "accounts": 1,
            "activities": 2,
            "processes": 2,
            "mappings": 4,
        }

    def test_second_trigger_conflicts(self, service, sal):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])

        with pytest.raises(CalculationInProgressError) as exc_info:
            service.trigger(sal["hospital_id"], sal["period_id"])

        assert exc_info.value.active_job_id == ticket["job_id"]

    def test_trigger_after_completion_is_allowed(self, orchestrator, service, sal, clock):
        orchestrator.trigger_and_wait(sal["hospital_id"], sal["period_id"])
        clock.advance(60)

        ticket = service.trigger(sal["hospital_id"], sal["period_id"])

        assert ticket["status"] == "queued"

    def test_trigger_for_unknown_period(self, service, sal):
        with pytest.raises(PeriodNotFoundError):
            service.trigger(sal["hospital_id"], uuid4())

    def test_requested_by_is_recorded(self, service, sal, session_factory, clock):
        user = uuid4()
        ticket = service.trigger(sal["hospital_id"], sal["period_id"], requested_by=user)

        with session_factory() as s:
            job = JobTracker(s, clock).get_job(ticket["job_id"])
        assert job.requested_by == user


# =============================================================================
# Status and results
# =============================================================================


class TestStatus:
    def test_completed_job_status(self, orchestrator, service, sal):
        job = orchestrator.trigger_and_wait(sal["hospital_id"], sal["period_id"])

        status = service.job_status(sal["hospital_id"], job.job_id)

        assert status["status"] == "completed"
        assert status["progress"]["percentage"] == Decimal("100")
        assert status["progress"]["completed_steps"] == 3
        assert status["result"]["success"] is True
        assert status["error_message"] is None
        assert status["estimated_remaining_time"] == 0.0
        assert status["period"]["calculation_status"] == "completed"

    def test_job_of_another_hospital_is_not_found(self, service, sal, make_scenario):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])
        other = make_scenario("OTH").commit()

        with pytest.raises(JobNotFoundError):
            service.job_status(other.hospital_id, ticket["job_id"])

    def test_period_status(self, orchestrator, service, sal):
        job = orchestrator.trigger_and_wait(sal["hospital_id"], sal["period_id"])

        status = service.period_status(sal["hospital_id"], sal["period_id"])

        assert status["calculation_status"] == "completed"
        assert status["calculation_error"] is None
        assert status["progress"]["completed_stages"] == 3
        assert status["latest_job_id"] == job.job_id
        assert status["last_calculated_at"] is not None

    def test_period_status_without_jobs(self, service, sal):
        status = service.period_status(sal["hospital_id"], sal["period_id"])

        assert status["calculation_status"] == "pending"
        assert status["latest_job_id"] is None

    def test_results_before_completion(self, service, sal):
        with pytest.raises(CalculationNotCompletedError):
            service.results(sal["hospital_id"], sal["period_id"])

    def test_results_after_completion(self, orchestrator, service, sal):
        orchestrator.trigger_and_wait(sal["hospital_id"], sal["period_id"])

        results = service.results(sal["hospital_id"], sal["period_id"])

        assert results["calculation_summary"]["totals"]["total_process_cost"] == Decimal("120000")

    def test_period_summary(self, service, sal):
        summary = service.period_summary(sal["hospital_id"], sal["period_id"])

        assert summary["period_name"] == "2025-Q1"
        assert summary["total_accounts"] == 1


class TestJobListing:
    def test_list_and_summary(self, orchestrator, service, sal, make_scenario, clock):
        orchestrator.trigger_and_wait(sal["hospital_id"], sal["period_id"])
        clock.advance(5)
        service.trigger(sal["hospital_id"], sal["period_id"])

        jobs = service.list_jobs(sal["hospital_id"])
        assert [j["status"] for j in jobs] == ["pending", "completed"]
        assert len(service.list_jobs(sal["hospital_id"], status=JobStatus.COMPLETED)) == 1
        assert service.list_jobs(sal["hospital_id"], limit=1)[0]["status"] == "pending"
        assert service.list_jobs(make_scenario("OTH").commit().hospital_id) == []

        summary = service.job_summary(sal["hospital_id"])
        assert summary["total_jobs"] == 2
        assert summary["by_status"]["completed"] == 1
        assert summary["by_status"]["pending"] == 1
        assert summary["by_type"] == {"abc_calculation": 2}
        assert len(summary["recent_jobs"]) == 2


# =============================================================================
# Cancel
# =============================================================================


class TestCancel:
    def test_cancel_pending_job(self, service, sal, session_factory):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])

        view = service.cancel(sal["hospital_id"], ticket["job_id"])

        assert view["status"] == "cancelled"
        assert view["period"]["calculation_status"] == "cancelled"
        period = _period(session_factory, sal["period_id"])
        assert period.calculation_status == CalculationStatus.CANCELLED

    def test_cancelled_job_is_skipped_by_the_worker(self, orchestrator, service, sal):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])
        service.cancel(sal["hospital_id"], ticket["job_id"])

        job = orchestrator.run_job(ticket["job_id"])

        assert job.status == JobStatus.CANCELLED
        assert job.started_at is None

    def test_cancel_finished_job_is_rejected(self, orchestrator, service, sal):
        job = orchestrator.trigger_and_wait(sal["hospital_id"], sal["period_id"])

        with pytest.raises(JobNotCancellableError) as exc_info:
            service.cancel(sal["hospital_id"], job.job_id)

        assert exc_info.value.current_status == "completed"

    def test_cancel_allows_a_new_trigger(self, service, sal, clock):
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])
        service.cancel(sal["hospital_id"], ticket["job_id"])
        clock.advance(1)

        again = service.trigger(sal["hospital_id"], sal["period_id"])

        assert again["job_id"] != ticket["job_id"]


# =============================================================================
# Stale job reaping
# =============================================================================


class TestStaleJobs:
    def test_running_job_past_timeout_is_failed(self, session_factory, sal, clock):
        settings = EngineSettings(stale_job_timeout_seconds=60)
        orchestrator = CostingOrchestrator(session_factory, settings=settings, clock=clock)
        service = orchestrator.calculations
        ticket = service.trigger(sal["hospital_id"], sal["period_id"])
        with session_scope(session_factory) as s:
            JobTracker(s, clock).mark_started(ticket["job_id"])

        clock.advance(30)
        assert service.reap_stale_jobs() == []

        clock.advance(31)
        assert service.reap_stale_jobs() == [ticket["job_id"]]

        status = service.job_status(sal["hospital_id"], ticket["job_id"])
        assert status["status"] == "failed"
        assert "timed out after 60 seconds" in status["error_message"]
        period = _period(session_factory, sal["period_id"])
        assert period.calculation_status == CalculationStatus.FAILED

    def test_pending_jobs_are_not_reaped(self, service, sal, clock):
        service.trigger(sal["hospital_id"], sal["period_id"])
        clock.advance(10_000)

        assert service.reap_stale_jobs() == []


def test_job_view_without_period(service, sal, session_factory, clock):
    ticket = service.trigger(sal["hospital_id"], sal["period_id"])
    with session_factory() as s:
        job = JobTracker(s, clock).get_job(ticket["job_id"])

    view = job_view(job)

    assert "period" not in view
    assert "error_message" not in view
    assert view["duration"] is None
