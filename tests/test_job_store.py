"""Tests for the job stores' compare-and-swap primitives."""

import json
import threading
from datetime import timedelta
from types import SimpleNamespace

import pytest

from quizfill.jobs.models import JobStatus, new_backfill_job
from quizfill.jobs.store import PostgresJobStore, abandon_pending
from quizfill.schemas.content import utcnow


def test_create_and_get(job_store):
    job = job_store.create(new_backfill_job("c", "s", 10))
    loaded = job_store.get(job.job_id)
    assert loaded is not None
    assert loaded.job_id == job.job_id
    assert loaded.status == JobStatus.PENDING
    assert job_store.get("missing") is None


def test_create_duplicate_rejected(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    with pytest.raises(ValueError):
        job_store.create(job)


def test_claim_sets_running_and_lease(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    before = utcnow()
    claimed = job_store.claim(job.job_id, 300)
    assert claimed is not None
    assert claimed.status == JobStatus.RUNNING
    assert claimed.started_at >= before
    assert claimed.lease_expires_at >= before + timedelta(seconds=299)
    assert job_store.get(job.job_id).status == JobStatus.RUNNING


def test_second_claim_fails(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    assert job_store.claim(job.job_id, 300) is not None
    assert job_store.claim(job.job_id, 300) is None
    assert job_store.claim("missing", 300) is None


def test_concurrent_claims_only_one_wins(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    results = []
    barrier = threading.Barrier(8)

    def claim():
        barrier.wait()
        results.append(job_store.claim(job.job_id, 300))

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert sum(1 for r in results if r is not None) == 1


def test_finish_only_from_running(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    done = job.model_copy(update={"status": JobStatus.COMPLETED})
    assert job_store.finish(done) is False  # still PENDING

    claimed = job_store.claim(job.job_id, 300)
    finished = claimed.model_copy(update={"status": JobStatus.COMPLETED, "final_count": 4})
    assert job_store.finish(finished) is True
    stored = job_store.get(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.final_count == 4
    assert stored.lease_expires_at is None


def test_job_never_transitions_twice(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    claimed = job_store.claim(job.job_id, 300)
    assert job_store.finish(claimed.model_copy(update={"status": JobStatus.COMPLETED}))
    assert not job_store.finish(claimed.model_copy(update={"status": JobStatus.FAILED}))
    assert job_store.get(job.job_id).status == JobStatus.COMPLETED
    assert job_store.claim(job.job_id, 300) is None


def test_list_expired_running(job_store):
    fresh = job_store.create(new_backfill_job("c", "s1"))
    stale = job_store.create(new_backfill_job("c", "s2"))
    pending = job_store.create(new_backfill_job("c", "s3"))
    job_store.claim(fresh.job_id, 300)
    job_store.claim(stale.job_id, 60)

    expired = job_store.list_expired_running(utcnow() + timedelta(seconds=120))
    assert [j.job_id for j in expired] == [stale.job_id]
    assert pending.job_id not in [j.job_id for j in expired]
    assert job_store.list_expired_running() == []


def test_abandon_pending_fails_unclaimed_job(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    assert abandon_pending(job_store, job, "gone")
    stored = job_store.get(job.job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "gone"
    assert job_store.claim(job.job_id, 300) is None


def test_abandon_pending_leaves_claimed_job(job_store):
    job = job_store.create(new_backfill_job("c", "s"))
    job_store.claim(job.job_id, 300)
    assert not abandon_pending(job_store, job, "gone")
    assert job_store.get(job.job_id).status == JobStatus.RUNNING


class _RecordingConnection:
    def __init__(self):
        self.params = []

    def execute(self, sql, params=None):
        self.params.append(params)
        return SimpleNamespace(rowcount=1)


def test_postgres_finish_drops_lease_from_stored_data(monkeypatch):
    conn = _RecordingConnection()
    monkeypatch.setattr(PostgresJobStore, "_connect", lambda self: conn)
    store = PostgresJobStore("postgresql://unused")
    running = new_backfill_job("c", "s").model_copy(update={
        "status": JobStatus.COMPLETED,
        "lease_expires_at": utcnow() + timedelta(seconds=300),
    })

    assert store.finish(running)

    status, data, job_id, expected = conn.params[-1]
    assert (status, job_id, expected) == ("COMPLETED", running.job_id, "RUNNING")
    assert json.loads(data)["lease_expires_at"] is None
