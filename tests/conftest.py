"""
Pytest fixtures for the costing engine test suite.

Provides:
- A file-backed SQLite database per test (worker threads and separate
  sessions see the same data; in-memory SQLite would not)
- Deterministic clock
- Structured log capture
- A scenario builder for hospitals, periods and their costing data
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import UUID

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import costing_batch.models  # noqa: F401
import costing_kernel.models  # noqa: F401
from costing_kernel.db.base import Base
from costing_kernel.db.guards import register_write_guards, unregister_write_guards
from costing_kernel.domain.clock import DeterministicClock
from costing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from costing_kernel.models import (
    Account,
    AccountActivityMapping,
    AccountCategory,
    Activity,
    ActivityProcessMapping,
    BillingCode,
    BillingVolume,
    CostEntry,
    Driver,
    Employee,
    Hospital,
    Period,
    Process,
    WorkRatio,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture costing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "stage1_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _write_guards():
    register_write_guards()
    yield
    unregister_write_guards()


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'costing.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Scenario builder
# =============================================================================


class CostingScenario:
    """Builds one hospital period with its costing data.

    Every helper flushes so ids are available immediately; call
    ``commit()`` before handing the data to code that opens its own
    sessions.
    """

    def __init__(self, session: Session, code: str = "GEN", period_name: str = "2025-Q1"):
        self.session = session
        self.hospital = Hospital(code=code, name=f"{code} General Hospital")
        self._add(self.hospital)
        self.period = Period(
            hospital_id=self.hospital.id,
            name=period_name,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 3, 31),
        )
        self._add(self.period)

    @property
    def hospital_id(self) -> UUID:
        return self.hospital.id

    @property
    def period_id(self) -> UUID:
        return self.period.id

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def commit(self) -> "CostingScenario":
        self.session.commit()
        return self

    def account(
        self,
        code: str,
        amounts: list[str] | tuple[str, ...] = (),
        is_direct: bool = False,
        category: AccountCategory = AccountCategory.EXPENSE,
    ) -> Account:
        account = self._add(
            Account(
                hospital_id=self.hospital_id,
                period_id=self.period_id,
                code=code,
                name=f"Account {code}",
                category=category,
                is_direct=is_direct,
            )
        )
        for month, amount in enumerate(amounts, start=1):
            account.cost_entries.append(CostEntry(month=month, amount=Decimal(amount)))
        self.session.flush()
        return account

    def activity(self, code: str, category: str | None = None) -> Activity:
        return self._add(
            Activity(
                hospital_id=self.hospital_id,
                period_id=self.period_id,
                code=code,
                name=f"Activity {code}",
                category=category,
            )
        )

    def map_account(self, account: Account, activity: Activity, ratio: str) -> AccountActivityMapping:
        return self._add(
            AccountActivityMapping(
                hospital_id=self.hospital_id,
                account_id=account.id,
                activity_id=activity.id,
                ratio=Decimal(ratio),
            )
        )

    def driver(self, code: str, driver_type: str) -> Driver:
        return self._add(
            Driver(
                hospital_id=self.hospital_id,
                period_id=self.period_id,
                code=code,
                name=f"Driver {code}",
                driver_type=driver_type,
            )
        )

    def process(
        self,
        code: str,
        volume: str | None = None,
        price: str = "0",
        is_billable: bool = True,
    ) -> Process:
        process = self._add(
            Process(
                hospital_id=self.hospital_id,
                period_id=self.period_id,
                code=code,
                name=f"Process {code}",
                is_billable=is_billable,
            )
        )
        if volume is not None:
            billing_code = self._add(
                BillingCode(
                    hospital_id=self.hospital_id,
                    process_id=process.id,
                    code=f"BC-{code}",
                    name=f"Billing {code}",
                    price=Decimal(price),
                )
            )
            self._add(
                BillingVolume(
                    billing_code_id=billing_code.id,
                    period_id=self.period_id,
                    volume=Decimal(volume),
                )
            )
        return process

    def map_process(
        self,
        activity: Activity,
        process: Process,
        rate: str = "1",
        driver: Driver | None = None,
    ) -> ActivityProcessMapping:
        return self._add(
            ActivityProcessMapping(
                hospital_id=self.hospital_id,
                activity_id=activity.id,
                process_id=process.id,
                driver_id=driver.id if driver is not None else None,
                rate=Decimal(rate),
            )
        )

    def employee(
        self,
        code: str,
        hourly_rate: str | None = None,
        annual_salary: str | None = None,
        fte: str = "1",
    ) -> Employee:
        return self._add(
            Employee(
                hospital_id=self.hospital_id,
                period_id=self.period_id,
                code=code,
                name=f"Employee {code}",
                hourly_rate=Decimal(hourly_rate) if hourly_rate is not None else None,
                annual_salary=Decimal(annual_salary) if annual_salary is not None else None,
                fte=Decimal(fte),
            )
        )

    def work_ratio(
        self,
        employee: Employee,
        activity: Activity,
        ratio: str,
        hours: str,
        process: Process | None = None,
    ) -> WorkRatio:
        return self._add(
            WorkRatio(
                hospital_id=self.hospital_id,
                employee_id=employee.id,
                activity_id=activity.id,
                process_id=process.id if process is not None else None,
                ratio=Decimal(ratio),
                hours_per_period=Decimal(hours),
            )
        )


@pytest.fixture
def scenario(session) -> CostingScenario:
    return CostingScenario(session)


@pytest.fixture
def make_scenario(session):
    """Factory for additional hospitals in the same database."""

    def _make(code: str, period_name: str = "2025-Q1") -> CostingScenario:
        return CostingScenario(session, code=code, period_name=period_name)

    return _make


def build_sal_scenario(session: Session) -> dict:
    """Indirect SAL account (100000) split 60/40 over activities X and Y.

    Y also carries one employee costing 20000 (400 hours at 50/h), so both
    activities end at 60000.  X feeds process PX, Y feeds PY.
    """
    s = CostingScenario(session, code="SAL")
    sal = s.account("SAL", amounts=["50000", "50000"], category=AccountCategory.LABOR)
    x = s.activity("X")
    y = s.activity("Y")
    s.map_account(sal, x, "0.6")
    s.map_account(sal, y, "0.4")
    px = s.process("PX", volume="100", price="700")
    py = s.process("PY", volume="200", price="250")
    s.map_process(x, px)
    s.map_process(y, py)
    nurse = s.employee("N1", hourly_rate="50")
    s.work_ratio(nurse, y, "1", "400")
    s.commit()
    return {
        "scenario": s,
        "hospital_id": s.hospital_id,
        "period_id": s.period_id,
        "account": sal,
        "x": x,
        "y": y,
        "px": px,
        "py": py,
        "employee": nurse,
    }


@pytest.fixture
def sal(session) -> dict:
    return build_sal_scenario(session)
