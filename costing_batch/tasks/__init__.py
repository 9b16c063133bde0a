"""
costing_batch.tasks -- runners that execute queued calculation jobs.

The ABC runner lives in abc_calculation.py and is imported directly by the
orchestrator so that importing this package stays free of service imports.
"""

from costing_batch.tasks.base import CalculationTask, TaskRegistry

__all__ = ["CalculationTask", "TaskRegistry"]
