"""Tests for Job records and the job status state machine."""

from __future__ import annotations

import pytest

from steadfast.core.errors import InvalidTransitionError
from steadfast.jobs import InMemoryJobStore, Job, JobStatus, JobStore, can_transition, validate_transition


class TestTransitions:
    @pytest.mark.parametrize(
        "current, target",
        [
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.RUNNING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.FAILED),
        ],
    )
    def test_valid(self, current, target):
        assert can_transition(current, target)
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (JobStatus.PENDING, JobStatus.COMPLETED),
            (JobStatus.PENDING, JobStatus.FAILED),
            (JobStatus.COMPLETED, JobStatus.RUNNING),
            (JobStatus.FAILED, JobStatus.PENDING),
            (JobStatus.RUNNING, JobStatus.PENDING),
        ],
    )
    def test_invalid(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(current, target)
        assert exc_info.value.current == current.value
        assert exc_info.value.target == target.value


class TestJob:
    def test_create(self):
        payload = {"brand": "acme"}
        job = Job.create("collect_ads", payload)
        payload["brand"] = "changed"

        assert job.status is JobStatus.PENDING
        assert job.payload == {"brand": "acme"}
        assert len(job.id) == 36
        assert Job.create("collect_ads").id != job.id

    def test_lifecycle_timestamps(self):
        job = Job.create("transcribe")
        job.transition_to(JobStatus.RUNNING)
        assert job.started_at is not None
        assert job.completed_at is None

        job.transition_to(JobStatus.COMPLETED)
        assert job.is_terminal
        assert job.completed_at >= job.started_at

    def test_illegal_transition_leaves_job_unchanged(self):
        job = Job.create("transcribe")
        with pytest.raises(InvalidTransitionError):
            job.transition_to(JobStatus.COMPLETED)
        assert job.status is JobStatus.PENDING

    def test_to_dict(self):
        job = Job.create("generate_video", {"scenes": 3})
        d = job.to_dict()
        assert d["status"] == "PENDING"
        assert d["payload"] == {"scenes": 3}
        assert d["started_at"] is None
        assert d["created_at"].endswith("+00:00")


class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_stores_copies(self):
        job = Job.create("quality_gate")
        store = InMemoryJobStore(job)
        assert isinstance(store, JobStore)

        loaded = await store.get(job.id)
        loaded.transition_to(JobStatus.RUNNING)
        assert (await store.get(job.id)).status is JobStatus.PENDING

        await store.save(loaded)
        assert (await store.get(job.id)).status is JobStatus.RUNNING
        assert store.history == [(job.id, "RUNNING")]

    @pytest.mark.asyncio
    async def test_missing(self):
        assert await InMemoryJobStore().get("nope") is None
