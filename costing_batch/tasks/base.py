"""
Job runners: the CalculationTask protocol and the registry that resolves a
queued job's ``job_type`` to the runner that executes it.

Architecture:
    costing_batch/tasks.  Only imports from costing_batch.domain and stdlib;
    concrete runners (abc_calculation.py) import the services they drive.

Invariants enforced:
    - At most one runner per job type.
    - Lookup of an unregistered job type names the types that are available.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from costing_batch.domain.types import CalculationJob


@runtime_checkable
class CalculationTask(Protocol):
    """A runner for one kind of calculation job.

    Contract:
        ``run(job_id)`` takes a queued job to a terminal state (or leaves it
        cancelled) and returns the final job DTO.  The runner opens its own
        sessions; the dispatcher thread shares nothing with the caller.

    Non-goals:
        Retries.  A failed job stays failed and a new trigger creates a new job.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def run(self, job_id: str) -> CalculationJob: ...


class TaskRegistry:
    """job_type -> CalculationTask."""

    def __init__(self) -> None:
        self._runners: dict[str, CalculationTask] = {}

    def register(self, task: CalculationTask) -> None:
        """Add a runner.  Raises ValueError if its job type already has one."""
        job_type = task.task_type
        if job_type in self._runners:
            raise ValueError(f"A runner for job type '{job_type}' is already registered")
        self._runners[job_type] = task

    def get(self, task_type: str) -> CalculationTask:
        runner = self._runners.get(task_type)
        if runner is None:
            available = ", ".join(self.list_tasks()) or "none"
            raise KeyError(f"No runner for job type '{task_type}' (available: {available})")
        return runner

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._runners))

    def __len__(self) -> int:
        return len(self._runners)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._runners
