"""Job persistence protocol and an in-memory implementation."""

from __future__ import annotations

import copy
from typing import Protocol, runtime_checkable

from steadfast.jobs.models import Job


@runtime_checkable
class JobStore(Protocol):
    """Persistence for job records; implemented by the host application."""

    async def get(self, job_id: str) -> Job | None: ...

    async def save(self, job: Job) -> None: ...


class InMemoryJobStore:
    """Dict-backed :class:`JobStore`. Stores copies, like a real database would."""

    def __init__(self, *jobs: Job):
        self._jobs: dict[str, Job] = {job.id: copy.deepcopy(job) for job in jobs}
        self.history: list[tuple[str, str]] = []

    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    async def save(self, job: Job) -> None:
        self._jobs[job.id] = copy.deepcopy(job)
        self.history.append((job.id, job.status.value))

    def __len__(self) -> int:
        return len(self._jobs)
