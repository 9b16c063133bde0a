"""
JobDispatcher -- in-process worker pool for calculation jobs.

Contract:
    Runs submitted callables on a bounded ThreadPoolExecutor keyed by
    job_id.  ``revoke()`` removes work that has not started yet; work that
    is already running is never interrupted.

Architecture: costing_batch/services.  No database access; the submitted
    callable owns its sessions.

Invariants enforced:
    - At most one queued or running future per job_id.
    - Only queued or running futures are tracked; a future is dropped as
      soon as it finishes or is revoked.
    - Graceful shutdown: ``shutdown(wait=True)`` lets running jobs finish.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from costing_kernel.logging_config import get_logger

logger = get_logger("batch.dispatcher")


class JobDispatcher:
    """Bounded worker pool with best-effort revocation.

    Contract:
        - ``submit()`` queues ``fn(*args)`` under ``job_id``.
        - ``revoke()`` returns True only if the work was removed before
          it started.
    Non-goals:
        - NOT a distributed queue; jobs do not survive a process restart.
          Stuck jobs are reaped by the stale-job policy instead.
    """

    def __init__(self, max_workers: int = 2, queue_name: str = "abc_calculations"):
        self._queue_name = queue_name
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"costing-{queue_name}",
        )
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()

    @property
    def queue_name(self) -> str:
        return self._queue_name

    def submit(self, job_id: str, fn: Callable[..., Any], *args: Any) -> Future:
        """Queue ``fn(*args)`` for ``job_id``.

        Raises:
            ValueError: If the job already has queued or running work.
        """
        with self._lock:
            existing = self._futures.get(job_id)
            if existing is not None and not existing.done():
                raise ValueError(f"Job {job_id} is already dispatched")
            future = self._executor.submit(fn, *args)
            self._futures[job_id] = future

        future.add_done_callback(lambda f, jid=job_id: self._on_done(jid, f))
        logger.info(
            "job_dispatched",
            extra={"job_id": job_id, "queue": self._queue_name},
        )
        return future

    def revoke(self, job_id: str) -> bool:
        """Remove queued work for ``job_id``; False if running or unknown."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is None:
            return False
        revoked = future.cancel()
        logger.info(
            "job_revoke_requested",
            extra={"job_id": job_id, "revoked": revoked, "queue": self._queue_name},
        )
        return revoked

    def is_dispatched(self, job_id: str) -> bool:
        with self._lock:
            future = self._futures.get(job_id)
        return future is not None and not future.done()

    def future(self, job_id: str) -> Future | None:
        """The queued or running future for ``job_id``, if any."""
        with self._lock:
            return self._futures.get(job_id)

    def tracked_jobs(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._futures)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        logger.info("dispatcher_stopped", extra={"queue": self._queue_name})

    def _on_done(self, job_id: str, future: Future) -> None:
        with self._lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "job_worker_crashed",
                extra={"job_id": job_id, "error": str(exc)},
                exc_info=exc,
            )
