"""Bounded fan-out: run independent items with at most K in flight.

WHY
───
Collection, transcription and quality-gate pipelines each push tens to
hundreds of items through a slow remote dependency. Sequential processing is
too slow; unbounded ``gather`` floods the provider and trips its breaker.
``run_bounded`` keeps exactly K workers busy on a single event loop and
isolates failures per item.

ARCHITECTURE
────────────
::

    run_bounded(items, K, worker, on_partial_failure)
      ├── K worker slots (asyncio.Semaphore)
      │     next queued item starts as soon as a slot frees up
      ├── per-item try/except ─ a failure is recorded, siblings keep going
      └── BatchOutcome        ─ total / processed / succeeded / skipped / failures
            │
            ├── "aggregate-and-throw" (default) ─ raise BatchFailedError if any failed
            └── "best-effort"                   ─ return the outcome regardless

Completion order is not submission order; anything the worker persists is
persisted in completion order.

Example::

    outcome = await run_bounded(asset_ids, 5, processor, item_id=str)
    job.result_summary = outcome.summary()
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from steadfast.core.errors import BatchFailedError, ItemProcessingError, one_line
from steadfast.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class PartialFailurePolicy(str, Enum):
    """What ``run_bounded`` does when some items failed."""

    AGGREGATE_AND_THROW = "aggregate-and-throw"
    BEST_EFFORT = "best-effort"


@dataclass(frozen=True)
class ItemFailure:
    """One failed item; ``error`` wraps the worker's exception."""

    item_id: str
    error: BaseException

    @property
    def cause(self) -> BaseException:
        """The exception the worker itself raised."""
        if isinstance(self.error, ItemProcessingError):
            return self.error.error
        return self.error

    @property
    def message(self) -> str:
        return one_line(self.cause)


class Skipped:
    """Marker a worker returns for an item it did not need to process."""

    __slots__ = ("reason",)

    def __init__(self, reason: str = "already_done"):
        self.reason = reason

    def __repr__(self) -> str:
        return f"Skipped({self.reason!r})"


@dataclass
class BatchOutcome(Generic[T]):
    """Aggregate result of one ``run_bounded`` invocation."""

    total: int
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    succeeded_count: int = 0
    skipped_count: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def processed_count(self) -> int:
        """Items that settled (succeeded, skipped or failed)."""
        return self.succeeded_count + self.skipped_count + len(self.failures)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_ids(self) -> list[str]:
        return [f.item_id for f in self.failures]

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def summary(self) -> str:
        """Single-line summary for a job's result or error field.

        ``"10/10 items processed"`` when everything succeeded,
        ``"8/10 items processed; 2 failed (first: a3: HTTP 503)"`` otherwise.
        """
        done = self.succeeded_count + self.skipped_count
        text = f"{done}/{self.total} items processed"
        if self.skipped_count:
            text += f" ({self.skipped_count} already done)"
        if self.failures:
            first = self.failures[0]
            text += f"; {len(self.failures)} failed (first: {first.item_id}: {first.message})"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / job summaries."""
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "processed": self.processed_count,
            "succeeded": self.succeeded_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "failures": [{"item_id": f.item_id, "error": f.message} for f in self.failures],
            "duration_seconds": self.duration_seconds,
        }


async def run_bounded(
    items: Iterable[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[Any]],
    *,
    on_partial_failure: PartialFailurePolicy | str = PartialFailurePolicy.AGGREGATE_AND_THROW,
    item_id: Callable[[T], str] = str,
) -> BatchOutcome:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    Args:
        items: Independent work items
        concurrency: Maximum simultaneous worker invocations (K)
        worker: Async callable; may return :class:`Skipped`
        on_partial_failure: ``"aggregate-and-throw"`` or ``"best-effort"``
        item_id: Extracts an item's id for the outcome

    Returns:
        :class:`BatchOutcome` (only when no item failed, unless best-effort)

    Raises:
        BatchFailedError: At least one item failed under aggregate-and-throw
        ValueError: ``concurrency`` < 1
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    policy = PartialFailurePolicy(on_partial_failure)

    work = list(items)
    outcome: BatchOutcome = BatchOutcome(total=len(work))
    sem = asyncio.Semaphore(concurrency)

    logger.info(
        "fanout.start",
        batch_id=outcome.batch_id,
        items=outcome.total,
        concurrency=concurrency,
        policy=policy.value,
    )

    failed_at: dict[int, ItemFailure] = {}

    async def _run_one(index: int, item: T) -> None:
        key = item_id(item)
        async with sem:
            try:
                result = await worker(item)
            except Exception as e:
                failed_at[index] = ItemFailure(key, ItemProcessingError(key, e))
                logger.warning(
                    "fanout.item_failed",
                    batch_id=outcome.batch_id,
                    item_id=key,
                    error=e,
                )
                return
        if isinstance(result, Skipped):
            outcome.skipped_count += 1
        else:
            outcome.succeeded_count += 1
        outcome.results[key] = result

    await asyncio.gather(*[_run_one(i, item) for i, item in enumerate(work)])
    # Submission order, so summaries name the same "first" failure every run.
    outcome.failures = [failed_at[i] for i in sorted(failed_at)]
    outcome.completed_at = datetime.now(UTC)

    logger.info(
        "fanout.complete",
        batch_id=outcome.batch_id,
        succeeded=outcome.succeeded_count,
        skipped=outcome.skipped_count,
        failed=outcome.failed_count,
        duration_seconds=outcome.duration_seconds,
    )

    if outcome.failures and policy is PartialFailurePolicy.AGGREGATE_AND_THROW:
        raise BatchFailedError(outcome)
    return outcome
