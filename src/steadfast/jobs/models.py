"""Job record and its status state machine.

A job is the outermost unit the pipelines report on: one collection,
transcription, quality-gate or generation run. Its ``payload`` holds the
job's inputs, ``result_summary`` a single line describing what happened and
``error`` a single line describing why it failed.

Valid transition graph::

    PENDING  → RUNNING
    RUNNING  → COMPLETED | FAILED
    COMPLETED → (terminal)
    FAILED    → (terminal)

A job that fails before it starts is still moved to RUNNING first, so every
FAILED job has a recorded start.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from steadfast.core.errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),  # terminal
    JobStatus.FAILED: frozenset(),  # terminal
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in JOB_VALID_TRANSITIONS.get(current, frozenset())


def validate_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_transition(JobStatus.RUNNING, JobStatus.COMPLETED)
        >>> validate_transition(JobStatus.PENDING, JobStatus.FAILED)
        InvalidTransitionError: Invalid job status transition: PENDING -> FAILED
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


@dataclass
class Job:
    """One job record."""

    id: str
    type: str
    status: JobStatus = JobStatus.PENDING
    payload: dict[str, Any] = field(default_factory=dict)
    result_summary: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(cls, type: str, payload: dict[str, Any] | None = None) -> Job:
        """Create a new job in PENDING status."""
        return cls(id=str(uuid.uuid4()), type=type, payload=dict(payload or {}))

    @property
    def is_terminal(self) -> bool:
        return not JOB_VALID_TRANSITIONS[self.status]

    def transition_to(self, target: JobStatus) -> None:
        validate_transition(self.status, target)
        self.status = target
        if target is JobStatus.RUNNING:
            self.started_at = utcnow()
        elif self.is_terminal:
            self.completed_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "payload": self.payload,
            "result_summary": self.result_summary,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
