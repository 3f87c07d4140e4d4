"""
Per-job lock registry.
"""

import threading

import pytest

from jobflow.core.exceptions import ConflictError
from jobflow.services.job_locks import held_job_ids, job_lock


def _try_lock(job_id, timeout, outcome):
    try:
        with job_lock(job_id, timeout=timeout):
            outcome.append("acquired")
    except ConflictError:
        outcome.append("timeout")


def test_same_job_blocks_until_timeout():
    outcome = []
    with job_lock(101):
        worker = threading.Thread(target=_try_lock, args=(101, 0.05, outcome))
        worker.start()
        worker.join(timeout=2)
    assert outcome == ["timeout"]


def test_different_jobs_do_not_contend():
    outcome = []
    with job_lock(201):
        worker = threading.Thread(target=_try_lock, args=(202, 0.05, outcome))
        worker.start()
        worker.join(timeout=2)
    assert outcome == ["acquired"]


def test_waiter_proceeds_after_release():
    outcome = []
    holder_ready = threading.Event()
    release = threading.Event()

    def _holder():
        with job_lock(301):
            holder_ready.set()
            release.wait(timeout=2)

    holder = threading.Thread(target=_holder)
    holder.start()
    holder_ready.wait(timeout=2)

    waiter = threading.Thread(target=_try_lock, args=(301, 2, outcome))
    waiter.start()
    release.set()
    holder.join(timeout=2)
    waiter.join(timeout=3)
    assert outcome == ["acquired"]


def test_registry_is_cleaned_up():
    with job_lock(401):
        assert 401 in held_job_ids()
    assert 401 not in held_job_ids()

    with pytest.raises(RuntimeError):
        with job_lock(402):
            raise RuntimeError("boom")
    assert 402 not in held_job_ids()
