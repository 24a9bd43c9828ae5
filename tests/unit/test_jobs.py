"""Tests for bananalab.core.jobs — the in-memory job state machine.

Tests cover:
- Job creation defaults and id format.
- Allowed and rejected status transitions.
- Monotonic, clamped progress.
- Retention-based eviction of terminal jobs.
"""

from __future__ import annotations

import pytest

from bananalab.core.errors import InvalidJobTransitionError, JobNotFoundError
from bananalab.core.jobs import JobStore, new_job_id


@pytest.fixture
def store() -> JobStore:
    return JobStore(max_jobs=3)


class TestCreate:
    def test_new_job_defaults(self, store: JobStore):
        job = store.create("alice", {"tone": "warm"}, preset_id="photo-restore")
        assert job.status == "queued"
        assert job.progress == 0
        assert job.result_urls == []
        assert job.error is None
        assert job.id.startswith("job_")

    def test_ids_unique(self):
        assert len({new_job_id() for _ in range(100)}) == 100

    def test_explicit_id(self, store: JobStore):
        assert store.create("alice", {}, job_id="job_custom").id == "job_custom"

    def test_get_missing_raises(self, store: JobStore):
        with pytest.raises(JobNotFoundError):
            store.get("job_missing")

    def test_find_missing_returns_none(self, store: JobStore):
        assert store.find("job_missing") is None

    def test_to_dict(self, store: JobStore):
        data = store.create("alice", {}).to_dict()
        assert set(data) >= {"id", "status", "progress", "result_urls", "error", "created_at"}


class TestTransitions:
    def test_happy_path(self, store: JobStore):
        job = store.create("alice", {})
        store.start(job.id)
        done = store.succeed(job.id, ["/static/results/a.png"])

        assert done.status == "succeeded"
        assert done.progress == 100
        assert done.is_terminal
        assert store.get(job.id).result_urls == ["/static/results/a.png"]

    def test_fail_from_queued(self, store: JobStore):
        job = store.create("alice", {})
        failed = store.fail(job.id, "boom")
        assert failed.status == "failed"
        assert failed.error == "boom"

    def test_fail_from_running(self, store: JobStore):
        job = store.create("alice", {})
        store.start(job.id)
        assert store.fail(job.id, "boom").status == "failed"

    def test_cannot_succeed_from_queued(self, store: JobStore):
        job = store.create("alice", {})
        with pytest.raises(InvalidJobTransitionError):
            store.succeed(job.id, [])

    @pytest.mark.parametrize("terminal", ["succeed", "fail"])
    def test_terminal_jobs_immutable(self, store: JobStore, terminal):
        job = store.create("alice", {})
        store.start(job.id)
        if terminal == "succeed":
            store.succeed(job.id, [])
        else:
            store.fail(job.id, "x")

        with pytest.raises(InvalidJobTransitionError):
            store.start(job.id)
        with pytest.raises(InvalidJobTransitionError):
            store.fail(job.id, "again")
        with pytest.raises(InvalidJobTransitionError):
            store.set_progress(job.id, 50)


class TestProgress:
    def test_progress_is_monotonic(self, store: JobStore):
        job = store.create("alice", {})
        store.start(job.id)
        store.set_progress(job.id, 60)
        assert store.set_progress(job.id, 10).progress == 60

    def test_progress_clamped(self, store: JobStore):
        job = store.create("alice", {})
        assert store.set_progress(job.id, 250).progress == 100


class TestEviction:
    def test_oldest_terminal_jobs_evicted(self, store: JobStore):
        first = store.create("alice", {})
        store.fail(first.id, "x")
        active = store.create("alice", {})
        store.create("alice", {})
        store.create("alice", {})

        assert len(store) == 3
        assert store.find(first.id) is None
        assert store.find(active.id) is not None

    def test_active_jobs_never_evicted(self, store: JobStore):
        jobs = [store.create("alice", {}) for _ in range(5)]
        assert len(store) == 5
        assert all(store.find(job.id) for job in jobs)
