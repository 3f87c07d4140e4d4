"""
Per-job serialization for stage progression.

``job_lock(job_id)`` holds an in-process lock keyed by job id for the
duration of the block. Different jobs never contend. Cross-process safety
comes from the row lock (``with_for_update``) and the Job.version_id
counter taken inside the block.
"""

import logging
import threading
from contextlib import contextmanager

from jobflow.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

# job_id → [lock, waiters]
_job_locks: dict[int, list] = {}
_registry_lock = threading.Lock()


@contextmanager
def job_lock(job_id: int, timeout: float | None = None):
    """Serialize work on one job.

    Args:
        job_id: Key of the lock.
        timeout: Seconds to wait; None waits indefinitely.

    Raises:
        ConflictError: the lock could not be acquired within ``timeout``.
    """
    with _registry_lock:
        entry = _job_locks.setdefault(job_id, [threading.Lock(), 0])
        entry[1] += 1

    lock = entry[0]
    acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
    try:
        if not acquired:
            logger.warning("Timed out waiting for lock on job %s", job_id, extra={"job_id": job_id})
            raise ConflictError(resource="Job", field="lock", value=str(job_id))
        yield
    finally:
        if acquired:
            lock.release()
        with _registry_lock:
            entry[1] -= 1
            if entry[1] == 0:
                _job_locks.pop(job_id, None)


def held_job_ids() -> list[int]:
    """Job ids that currently have a lock entry (held or awaited)."""
    with _registry_lock:
        return sorted(_job_locks)
