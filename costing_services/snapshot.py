"""
costing_services.snapshot -- Load one period's costing inputs in one pass.

Responsibility:
    Read every row the pipeline needs for (hospital, period) and convert it
    into the frozen engine inputs of ``costing_engines.types``.  The ORM
    rows for activities, processes and the period are kept so the
    orchestrator can write results back in the same session.

Architecture position:
    Services -- the read half of the pipeline's I/O boundary.

Invariants enforced:
    - Read only.  Loading a snapshot never mutates anything.
    - Decimal sums are computed in Python, never in SQL (the portable
      decimal column stores text on SQLite).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_engines.types import (
    AccountInput,
    AccountMappingInput,
    EmployeeInput,
    ProcessInput,
    ProcessMappingInput,
    WorkRatioInput,
)
from costing_kernel.domain.numeric import ZERO, to_decimal
from costing_kernel.exceptions import PeriodNotFoundError
from costing_kernel.models import (
    Account,
    AccountActivityMapping,
    Activity,
    ActivityProcessMapping,
    BillingCode,
    BillingVolume,
    Driver,
    Employee,
    Period,
    Process,
    WorkRatio,
)


@dataclass
class PeriodSnapshot:
    """Everything the three stages read for one period."""

    period: Period
    accounts: list[Account]
    activities: list[Activity]
    processes: list[Process]
    account_inputs: tuple[AccountInput, ...]
    account_mappings: tuple[AccountMappingInput, ...]
    employees: tuple[EmployeeInput, ...]
    work_ratios: tuple[WorkRatioInput, ...]
    process_inputs: tuple[ProcessInput, ...]
    process_mappings: tuple[ProcessMappingInput, ...]

    @property
    def activity_ids(self) -> list[UUID]:
        return [a.id for a in self.activities]

    @property
    def has_cost_entries(self) -> bool:
        return any(account.has_cost_entries for account in self.accounts)


def get_period(
    session: Session,
    hospital_id: UUID,
    period_id: UUID,
    for_update: bool = False,
) -> Period:
    """Load a hospital's period, optionally locking the row.

    A locking read also refreshes an instance already in the session, so
    status decisions are made on the committed row, not a stale copy.

    Raises:
        PeriodNotFoundError: unknown id or the period belongs to another hospital.
    """
    stmt = select(Period).where(Period.id == period_id, Period.hospital_id == hospital_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    period = session.execute(stmt).scalar_one_or_none()
    if period is None:
        raise PeriodNotFoundError(str(period_id), str(hospital_id))
    return period


def process_volumes(
    session: Session, period_id: UUID, process_ids: list[UUID]
) -> tuple[dict[UUID, Decimal], dict[UUID, Decimal]]:
    """Billed volume and revenue per process for the period."""
    volumes: dict[UUID, Decimal] = {pid: ZERO for pid in process_ids}
    revenues: dict[UUID, Decimal] = {pid: ZERO for pid in process_ids}
    if not process_ids:
        return volumes, revenues

    rows = session.execute(
        select(BillingCode.process_id, BillingCode.price, BillingVolume.volume)
        .join(BillingVolume, BillingVolume.billing_code_id == BillingCode.id)
        .where(
            BillingCode.process_id.in_(process_ids),
            BillingVolume.period_id == period_id,
        )
    ).all()
    for process_id, price, volume in rows:
        volume = to_decimal(volume)
        volumes[process_id] += volume
        revenues[process_id] += volume * to_decimal(price)
    return volumes, revenues


def load_period_snapshot(
    session: Session, hospital_id: UUID, period_id: UUID
) -> PeriodSnapshot:
    """Read the complete pipeline input for one period."""
    period = get_period(session, hospital_id, period_id)

    def scoped(model):
        return (
            select(model)
            .where(model.hospital_id == hospital_id, model.period_id == period_id)
            .order_by(model.code)
        )

    accounts = list(session.execute(scoped(Account)).scalars().all())
    activities = list(session.execute(scoped(Activity)).scalars().all())
    processes = list(session.execute(scoped(Process)).scalars().all())
    employees = list(session.execute(scoped(Employee)).scalars().all())
    drivers = {
        d.id: d for d in session.execute(scoped(Driver)).scalars().all()
    }

    account_mappings = session.execute(
        select(AccountActivityMapping)
        .join(Account, Account.id == AccountActivityMapping.account_id)
        .where(Account.hospital_id == hospital_id, Account.period_id == period_id)
    ).scalars().all()

    process_mappings = session.execute(
        select(ActivityProcessMapping)
        .join(Activity, Activity.id == ActivityProcessMapping.activity_id)
        .where(Activity.hospital_id == hospital_id, Activity.period_id == period_id)
    ).scalars().all()

    work_ratios = session.execute(
        select(WorkRatio)
        .join(Employee, Employee.id == WorkRatio.employee_id)
        .where(Employee.hospital_id == hospital_id, Employee.period_id == period_id)
    ).scalars().all()

    volumes, revenues = process_volumes(session, period_id, [p.id for p in processes])

    return PeriodSnapshot(
        period=period,
        accounts=accounts,
        activities=activities,
        processes=processes,
        account_inputs=tuple(
            AccountInput(
                account_id=a.id,
                code=a.code,
                is_direct=a.is_direct,
                total_cost=to_decimal(a.total_cost),
            )
            for a in accounts
        ),
        account_mappings=tuple(
            _account_mapping_input(m) for m in account_mappings
        ),
        employees=tuple(
            EmployeeInput(
                employee_id=e.id,
                hourly_rate=e.hourly_rate,
                annual_salary=e.annual_salary,
                fte=to_decimal(e.fte),
            )
            for e in employees
        ),
        work_ratios=tuple(
            WorkRatioInput(
                employee_id=wr.employee_id,
                activity_id=wr.activity_id,
                ratio=to_decimal(wr.ratio),
                hours_per_period=to_decimal(wr.hours_per_period),
                process_id=wr.process_id,
            )
            for wr in work_ratios
        ),
        process_inputs=tuple(
            ProcessInput(
                process_id=p.id,
                code=p.code,
                volume=volumes[p.id],
                revenue=revenues[p.id],
            )
            for p in processes
        ),
        process_mappings=tuple(
            ProcessMappingInput(
                activity_id=pm.activity_id,
                process_id=pm.process_id,
                rate=to_decimal(pm.rate),
                driver_id=pm.driver_id,
                driver_type=(
                    drivers[pm.driver_id].driver_type
                    if pm.driver_id is not None and pm.driver_id in drivers
                    else None
                ),
            )
            for pm in process_mappings
        ),
    )


def _account_mapping_input(mapping: AccountActivityMapping) -> AccountMappingInput:
    return AccountMappingInput(
        account_id=mapping.account_id,
        activity_id=mapping.activity_id,
        ratio=to_decimal(mapping.ratio),
    )
