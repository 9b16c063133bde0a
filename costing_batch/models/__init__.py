"""ORM models for calculation job persistence."""

from costing_batch.models.job import CalculationJobModel

__all__ = ["CalculationJobModel"]
