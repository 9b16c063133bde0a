"""
Configuration Schema (``costing_config.schema``).

Responsibility
--------------
Frozen dataclass describing the runtime settings of the costing engine.
The YAML loader produces an ``EngineSettings``; every other package
receives one through ``costing_config.get_active_config()``.

Invariants enforced
-------------------
* Settings are immutable after load.
* Numeric settings are validated in ``__post_init__``; an invalid value
  raises ``ValueError`` at load time, never at first use.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal


@dataclass(frozen=True)
class EngineSettings:
    """
    Runtime settings for the ABC pipeline and its job runner.

    Contract:
        Built only by ``costing_config.loader.parse_settings``.
    Guarantees:
        - ratio_tolerance >= 0.
        - annual_work_hours > 0.
        - worker_pool_size >= 1 and stale_job_timeout_seconds >= 1.
    """

    database_url: str = "sqlite:///costing.db"
    ratio_tolerance: Decimal = Decimal("0.001")
    annual_work_hours: Decimal = Decimal("2080")
    money_decimal_places: int = 9
    worker_pool_size: int = 2
    queue_name: str = "abc_calculations"
    stale_job_timeout_seconds: int = 3600
    log_level: str = "INFO"
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.ratio_tolerance < Decimal("0"):
            raise ValueError(
                f"ratio_tolerance must be >= 0, got {self.ratio_tolerance}"
            )
        if self.annual_work_hours <= Decimal("0"):
            raise ValueError(
                f"annual_work_hours must be > 0, got {self.annual_work_hours}"
            )
        if not 0 <= self.money_decimal_places <= 9:
            raise ValueError(
                "money_decimal_places must be between 0 and 9, "
                f"got {self.money_decimal_places}"
            )
        if self.worker_pool_size < 1:
            raise ValueError(
                f"worker_pool_size must be >= 1, got {self.worker_pool_size}"
            )
        if self.stale_job_timeout_seconds < 1:
            raise ValueError(
                "stale_job_timeout_seconds must be >= 1, "
                f"got {self.stale_job_timeout_seconds}"
            )
        if not self.queue_name:
            raise ValueError("queue_name must not be empty")

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls)) - {"checksum"}
