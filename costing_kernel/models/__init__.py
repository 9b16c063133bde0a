"""Domain models for the costing kernel."""

from costing_kernel.models.activity import (
    ACTIVITY_ENGINE_FIELDS,
    AccountActivityMapping,
    Activity,
)
from costing_kernel.models.hospital import (
    CalculationStatus,
    Department,
    Hospital,
    Period,
)
from costing_kernel.models.labor import Employee, WorkRatio
from costing_kernel.models.ledger import Account, AccountCategory, CostEntry
from costing_kernel.models.process import (
    PROCESS_ENGINE_FIELDS,
    ActivityProcessMapping,
    BillingCode,
    BillingVolume,
    Driver,
    DriverType,
    Process,
)

__all__ = [
    "Account",
    "AccountCategory",
    "CostEntry",
    "Activity",
    "AccountActivityMapping",
    "ACTIVITY_ENGINE_FIELDS",
    "Hospital",
    "Period",
    "CalculationStatus",
    "Department",
    "Employee",
    "WorkRatio",
    "Process",
    "Driver",
    "DriverType",
    "ActivityProcessMapping",
    "BillingCode",
    "BillingVolume",
    "PROCESS_ENGINE_FIELDS",
]
