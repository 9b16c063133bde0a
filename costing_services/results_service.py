"""
costing_services.results_service -- Read model over a calculated period.

Responsibility:
    Assemble the results payload of a completed calculation: the period
    summary, per-entity allocation results for accounts, activities and
    processes, the cost flow of each stage and the indirect cost that was
    left unallocated.

Architecture position:
    Services -- read-only.  Reads persisted engine-owned fields; never
    recomputes them.

Invariants enforced:
    - Results are only served for COMPLETED periods.  Anything else raises
      CalculationNotCompletedError, so a partial run is never visible.

Failure modes:
    - PeriodNotFoundError for an unknown period of the hospital.
    - CalculationNotCompletedError when the period is not COMPLETED.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_kernel.db.types import round_money
from costing_kernel.domain.clock import as_utc
from costing_kernel.domain.numeric import decimal_sum
from costing_kernel.exceptions import CalculationNotCompletedError
from costing_kernel.logging_config import get_logger
from costing_kernel.models import CalculationStatus, Hospital
from costing_services.snapshot import PeriodSnapshot, load_period_snapshot

logger = get_logger("services.results")


def jsonable(value: Any) -> Any:
    """Convert a results payload to JSON-safe primitives.

    Decimals become strings so no precision is lost on the way out.
    """
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def _value(field: Any) -> Any:
    return field.value if isinstance(field, Enum) else field


class ResultsService:
    """
    Results query for one period.

    Contract:
        ``get_results()`` returns ``calculation_summary``,
        ``allocation_results``, ``cost_flows`` and ``unallocated``.
    Non-goals:
        - Report exports and KPI dashboards.
    """

    def __init__(self, session: Session):
        self._session = session

    def get_results(self, hospital_id: UUID, period_id: UUID) -> dict[str, Any]:
        """Full results payload of a completed period.

        Raises:
            CalculationNotCompletedError: The period is not COMPLETED.
        """
        snapshot = load_period_snapshot(self._session, hospital_id, period_id)
        status = CalculationStatus(snapshot.period.calculation_status)
        if status != CalculationStatus.COMPLETED:
            raise CalculationNotCompletedError(str(period_id), status.value)

        logger.debug("results_requested", extra={"period_id": str(period_id)})
        return {
            "calculation_summary": self.calculation_summary(snapshot),
            "allocation_results": {
                "accounts": self.account_results(snapshot),
                "activities": self.activity_results(snapshot),
                "processes": self.process_results(snapshot),
            },
            "cost_flows": self.cost_flows(snapshot),
            "unallocated": self.unallocated(snapshot),
        }

    def period_summary(self, hospital_id: UUID, period_id: UUID) -> dict[str, Any]:
        """Headline numbers of a period, available in any status."""
        snapshot = load_period_snapshot(self._session, hospital_id, period_id)
        hospital = self._session.execute(
            select(Hospital).where(Hospital.id == hospital_id)
        ).scalar_one()
        period = snapshot.period
        return {
            "hospital_id": hospital.id,
            "hospital_name": hospital.name,
            "period_id": period.id,
            "period_name": period.name,
            "calculated_at": as_utc(period.last_calculated_at),
            "status": _value(period.calculation_status),
            "total_accounts": len(snapshot.accounts),
            "total_activities": len(snapshot.activities),
            "total_processes": len(snapshot.processes),
            "total_cost_allocated": decimal_sum(a.total_cost for a in snapshot.accounts),
            "mapped_accounts": len({m.account_id for m in snapshot.account_mappings}),
            "mapped_activities": len({m.activity_id for m in snapshot.process_mappings}),
        }

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def calculation_summary(self, snapshot: PeriodSnapshot) -> dict[str, Any]:
        period = snapshot.period
        return {
            "period": {
                "id": period.id,
                "name": period.name,
                "start_date": period.start_date,
                "end_date": period.end_date,
            },
            "totals": {
                "accounts_count": len(snapshot.accounts),
                "activities_count": len(snapshot.activities),
                "processes_count": len(snapshot.processes),
                "employees_count": len(snapshot.employees),
                "total_account_cost": decimal_sum(a.total_cost for a in snapshot.accounts),
                "total_activity_cost": decimal_sum(a.total_cost for a in snapshot.activities),
                "total_process_cost": decimal_sum(p.total_cost for p in snapshot.processes),
            },
            "mappings": {
                "account_activity_mappings": len(snapshot.account_mappings),
                "activity_process_mappings": len(snapshot.process_mappings),
                "work_ratios": len(snapshot.work_ratios),
            },
            "calculated_at": as_utc(period.last_calculated_at),
        }

    def account_results(self, snapshot: PeriodSnapshot) -> list[dict[str, Any]]:
        activities = {a.id: a for a in snapshot.activities}
        mappings_by_account = defaultdict(list)
        for mapping in snapshot.account_mappings:
            mappings_by_account[mapping.account_id].append(mapping)

        results = []
        for account in snapshot.accounts:
            total_cost = account.total_cost
            lines = []
            for mapping in mappings_by_account.get(account.id, []):
                activity = activities.get(mapping.activity_id)
                lines.append(
                    {
                        "activity_id": mapping.activity_id,
                        "activity_code": activity.code if activity else None,
                        "activity_name": activity.name if activity else None,
                        "ratio": mapping.ratio,
                        "allocated_amount": round_money(total_cost * mapping.ratio),
                    }
                )
            results.append(
                {
                    "id": account.id,
                    "code": account.code,
                    "name": account.name,
                    "category": _value(account.category),
                    "is_direct": account.is_direct,
                    "total_cost": total_cost,
                    "allocated_to_activities": lines,
                }
            )
        return results

    def activity_results(self, snapshot: PeriodSnapshot) -> list[dict[str, Any]]:
        employees: dict[Any, set] = defaultdict(set)
        for wr in snapshot.work_ratios:
            employees[wr.activity_id].add(wr.employee_id)
        processes: dict[Any, set] = defaultdict(set)
        for pm in snapshot.process_mappings:
            processes[pm.activity_id].add(pm.process_id)

        return [
            {
                "id": activity.id,
                "code": activity.code,
                "name": activity.name,
                "category": activity.category,
                "allocated_cost": activity.allocated_cost,
                "employee_cost": activity.employee_cost,
                "total_cost": activity.total_cost,
                "total_fte": activity.total_fte,
                "total_hours": activity.total_hours,
                "average_hourly_rate": activity.average_hourly_rate,
                "unit_cost": activity.unit_cost,
                "assigned_employees": len(employees[activity.id]),
                "mapped_processes": len(processes[activity.id]),
            }
            for activity in snapshot.activities
        ]

    def process_results(self, snapshot: PeriodSnapshot) -> list[dict[str, Any]]:
        inputs = {p.process_id: p for p in snapshot.process_inputs}
        return [
            {
                "id": process.id,
                "code": process.code,
                "name": process.name,
                "is_billable": process.is_billable,
                "allocated_cost": process.allocated_cost,
                "total_cost": process.total_cost,
                "unit_cost": process.unit_cost,
                "total_volume": inputs[process.id].volume,
                "total_revenue": inputs[process.id].revenue,
                "profit_margin": process.profit_margin,
            }
            for process in snapshot.processes
        ]

    def cost_flows(self, snapshot: PeriodSnapshot) -> dict[str, Any]:
        return {
            "stage1_account_to_activity": {
                "description": "Resource costs allocated from accounts to activities",
                "total_allocated": decimal_sum(a.allocated_cost for a in snapshot.activities),
                "mappings_count": len(snapshot.account_mappings),
            },
            "stage2_employee_to_activity": {
                "description": "Employee costs allocated to activities",
                "total_allocated": decimal_sum(a.employee_cost for a in snapshot.activities),
                "work_ratios_count": len(snapshot.work_ratios),
            },
            "stage3_activity_to_process": {
                "description": "Activity costs allocated to processes",
                "total_allocated": decimal_sum(p.allocated_cost for p in snapshot.processes),
                "mappings_count": len(snapshot.process_mappings),
            },
        }

    def unallocated(self, snapshot: PeriodSnapshot) -> dict[str, Any]:
        """Indirect accounts with no mappings; their cost reached no activity."""
        mapped = {m.account_id for m in snapshot.account_mappings}
        accounts = [
            {"id": a.id, "code": a.code, "amount": a.total_cost}
            for a in snapshot.accounts
            if not a.is_direct and a.id not in mapped
        ]
        return {
            "total": decimal_sum(a["amount"] for a in accounts),
            "accounts": accounts,
        }
