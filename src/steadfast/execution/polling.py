"""Submit-then-poll lifecycle of one provider task.

Task state machine::

    SUBMITTED ──► POLLING ──┬──► SUCCEEDED
                            ├──► FAILED      provider said so, or said
                            │                something we can't map
                            └──► TIMED_OUT   polling budget exhausted

Provider state strings are normalized through an explicit per-provider
:class:`StatusMap` into :class:`ProviderStatus`. Matching is exact and
case-insensitive; an unmapped string raises
:class:`~steadfast.core.errors.UnknownProviderStateError` so that a new
provider status fails loudly instead of being polled forever or silently
counted as a failure.

Polling uses a fixed interval (not exponential) up to a wall-clock budget.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from steadfast.core.errors import (
    InvalidTransitionError,
    PollTimeoutError,
    TerminalProviderError,
    UnknownProviderStateError,
)
from steadfast.core.logging import get_logger
from steadfast.execution.timeout import CancellationToken, Deadline

logger = get_logger(__name__)


class ProviderStatus(str, Enum):
    """Canonical provider task status."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


class TaskState(str, Enum):
    """Lifecycle of one generation/collection unit."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TASK_VALID_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.SUBMITTED: frozenset({TaskState.POLLING, TaskState.FAILED}),
    TaskState.POLLING: frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.TIMED_OUT}),
    TaskState.SUCCEEDED: frozenset(),  # terminal
    TaskState.FAILED: frozenset(),  # terminal
    TaskState.TIMED_OUT: frozenset(),  # terminal
}


@dataclass(frozen=True)
class StatusMap:
    """Explicit mapping from one provider's state strings to :class:`ProviderStatus`."""

    provider: str
    table: dict[str, ProviderStatus]

    @classmethod
    def build(
        cls,
        provider: str,
        *,
        succeeded: Iterable[str],
        in_progress: Iterable[str],
        failed: Iterable[str],
    ) -> StatusMap:
        table: dict[str, ProviderStatus] = {}
        for states, status in (
            (succeeded, ProviderStatus.SUCCEEDED),
            (in_progress, ProviderStatus.IN_PROGRESS),
            (failed, ProviderStatus.FAILED),
        ):
            for state in states:
                key = state.strip().lower()
                if key in table and table[key] is not status:
                    raise ValueError(f"{provider}: state {state!r} mapped twice")
                table[key] = status
        return cls(provider=provider, table=table)

    def normalize(self, raw_state: Any) -> ProviderStatus:
        """Map a raw state; raise ``UnknownProviderStateError`` if unmapped."""
        key = "" if raw_state is None else str(raw_state).strip().lower()
        try:
            return self.table[key]
        except KeyError:
            raise UnknownProviderStateError(self.provider, str(raw_state)) from None


@dataclass(frozen=True)
class PollResult:
    """One poll of a provider task, already normalized."""

    status: ProviderStatus
    result: Any = None
    reason: str | None = None
    raw_state: str | None = None
    payload: Any = None


@dataclass
class TaskTracker:
    """Records the state transitions of one provider task."""

    task_id: str
    state: TaskState = TaskState.SUBMITTED
    history: list[tuple[TaskState, datetime]] = field(default_factory=list)
    polls: int = 0

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.state, datetime.now(UTC)))

    @property
    def is_terminal(self) -> bool:
        return not TASK_VALID_TRANSITIONS[self.state]

    def transition(self, target: TaskState) -> None:
        if target not in TASK_VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, target.value, kind="task state")
        self.state = target
        self.history.append((target, datetime.now(UTC)))


async def poll_until_complete(
    poll: Callable[[str], Awaitable[PollResult]],
    task_id: str,
    *,
    interval: float,
    budget: float,
    label: str = "task",
    tracker: TaskTracker | None = None,
    token: CancellationToken | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult:
    """Poll ``task_id`` every ``interval`` seconds until it settles.

    Returns:
        The SUCCEEDED :class:`PollResult`

    Raises:
        TerminalProviderError: Provider reported failure (reason verbatim)
        UnknownProviderStateError: Provider reported an unmapped state
        PollTimeoutError: Still in progress when the budget ran out
    """
    if interval <= 0 or budget <= 0:
        raise ValueError("interval and budget must be positive")

    tracker = tracker or TaskTracker(task_id)
    tracker.transition(TaskState.POLLING)
    deadline = Deadline(budget, clock=clock)

    while True:
        if token is not None:
            token.raise_if_cancelled()
        tracker.polls += 1
        try:
            result = await poll(task_id)
        except UnknownProviderStateError:
            tracker.transition(TaskState.FAILED)
            raise

        if result.status is ProviderStatus.SUCCEEDED:
            tracker.transition(TaskState.SUCCEEDED)
            logger.info("poll.succeeded", label=label, task_id=task_id, polls=tracker.polls)
            return result

        if result.status is ProviderStatus.FAILED:
            tracker.transition(TaskState.FAILED)
            detail = result.reason or result.raw_state or "no reason given"
            logger.warning("poll.failed", label=label, task_id=task_id, reason=detail)
            raise TerminalProviderError(
                f"{label} task {task_id} ended with state={result.raw_state}: {detail}",
                reason=result.reason,
            )

        if deadline.remaining() < interval:
            tracker.transition(TaskState.TIMED_OUT)
            logger.warning("poll.timed_out", label=label, task_id=task_id, polls=tracker.polls)
            raise PollTimeoutError(task_id, budget)

        await sleep(interval)
