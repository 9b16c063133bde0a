"""costing_batch.services -- Job tracker and worker pool."""

from costing_batch.services.dispatcher import JobDispatcher
from costing_batch.services.tracker import JobTracker

__all__ = ["JobDispatcher", "JobTracker"]
