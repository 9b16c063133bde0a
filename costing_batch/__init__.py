"""
costing_batch -- Calculation job tracking and background execution.

Provides the job state machine, the persistent job record, the tracker
service, an in-process worker pool and the ABC calculation task.
CostingOrchestrator (costing_batch.orchestrator) wires them together.

Architecture:
    costing_batch/ is a top-level package.  Nothing in costing_kernel/ or
    costing_engines/ imports from it.  This __init__ imports nothing so
    that costing_services can use the tracker without pulling in the tasks.

Invariants:
    - Clock injection (no datetime.now() calls outside SystemClock)
    - Explicit transition table for every job mutator
    - Terminal job statuses are irreversible
    - At most one queued or running future per job id
"""
