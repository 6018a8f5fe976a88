"""Idempotent, resumable per-item processing.

A batch that dies half-way (deploy, OOM, provider outage) must not redo or
lose the items it already finished. Two rules make that true without a
replay log:

1. **Durable completion marker.** Whether an item is done is read from the
   item's own persisted record (a non-empty ``transcript`` field, a
   ``qualityGate`` object, a scene's ``videoUrl``), never from an in-memory
   set, so the check survives process restarts.
2. **Immediate per-item persistence.** Each outcome is saved the moment its
   worker settles, not batched at the end, so a crash loses at most the
   items that were in flight.

::

    processor(item_id)
      │
      ├── store.load(item_id) ──► ItemRecord{payload, completion_marker}
      ├── is_done(record) and not force_reprocess ──► Skipped
      ├── worker(WorkItem) ──► result | error
      └── store.save(item_id, ItemOutcome)   (before returning / raising)

Example::

    processor = ResumableItemProcessor(
        store=asset_store,
        worker=transcribe_asset,
        is_done=non_empty_field("transcript"),
    )
    outcome = await processor.run_batch(asset_ids, concurrency=5)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from steadfast.core.errors import one_line
from steadfast.core.logging import get_logger
from steadfast.execution.fanout import (
    BatchOutcome,
    PartialFailurePolicy,
    Skipped,
    run_bounded,
)

P = TypeVar("P")
R = TypeVar("R")

logger = get_logger(__name__)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ItemRecord:
    """Persisted state of one item as returned by an :class:`ItemStore`."""

    item_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    completion_marker: Any = None
    last_error: str | None = None
    result: Any = None


@dataclass(frozen=True)
class WorkItem(Generic[P]):
    """What a worker receives."""

    id: str
    payload: P
    is_already_done: bool = False


@dataclass(frozen=True)
class ItemOutcome:
    """What the processor persists for one item."""

    item_id: str
    status: OutcomeStatus
    result: Any = None
    error: str | None = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def marker(self) -> dict[str, str]:
        """Durable completion marker; non-empty even when ``result`` is None."""
        return {"status": self.status.value, "completed_at": self.completed_at.isoformat()}


@runtime_checkable
class ItemStore(Protocol):
    """Persistence for work items; implemented by the host application."""

    async def load(self, item_id: str) -> ItemRecord | None: ...

    async def save(self, item_id: str, outcome: ItemOutcome) -> None: ...


# ── Completion-marker predicates ─────────────────────────────────────────


def has_completion_marker(record: ItemRecord) -> bool:
    """Default: the store reports a non-empty completion marker."""
    marker = record.completion_marker
    if marker is None:
        return False
    if isinstance(marker, str):
        return bool(marker.strip())
    if isinstance(marker, (Mapping, list, tuple)):
        return len(marker) > 0
    return True


def non_empty_field(name: str) -> Callable[[ItemRecord], bool]:
    """Done when ``payload[name]`` is a non-blank string (e.g. a transcript)."""

    def check(record: ItemRecord) -> bool:
        value = record.payload.get(name)
        return value is not None and bool(str(value).strip())

    check.__name__ = f"non_empty_field({name!r})"
    return check


def mapping_field(name: str) -> Callable[[ItemRecord], bool]:
    """Done when ``payload[name]`` is a structured object (e.g. ``qualityGate``)."""

    def check(record: ItemRecord) -> bool:
        return isinstance(record.payload.get(name), Mapping)

    check.__name__ = f"mapping_field({name!r})"
    return check


# ── Processor ────────────────────────────────────────────────────────────


@dataclass
class ResumableItemProcessor(Generic[R]):
    """Wraps a worker with an idempotency check and per-item persistence.

    Attributes:
        store: Where item state is read from and outcomes written to
        worker: Async callable doing the remote work for one item
        is_done: Predicate over the persisted record (the durable marker)
        force_reprocess: Ignore existing markers and redo every item
    """

    store: ItemStore
    worker: Callable[[WorkItem[dict[str, Any]]], Awaitable[R]]
    is_done: Callable[[ItemRecord], bool] = has_completion_marker
    force_reprocess: bool = False

    async def load_item(self, item_id: str) -> WorkItem[dict[str, Any]] | None:
        record = await self.store.load(item_id)
        if record is None:
            return None
        return WorkItem(id=item_id, payload=record.payload, is_already_done=self.is_done(record))

    async def __call__(self, item_id: str) -> R | Skipped:
        item = await self.load_item(item_id)
        if item is None:
            logger.warning("resumable.item_missing", item_id=item_id)
            return Skipped("not_found")

        if item.is_already_done and not self.force_reprocess:
            logger.debug("resumable.skipped", item_id=item_id)
            return Skipped("already_done")

        try:
            result = await self.worker(item)
        except Exception as e:
            await self.store.save(
                item_id,
                ItemOutcome(item_id=item_id, status=OutcomeStatus.FAILED, error=one_line(e)),
            )
            raise

        await self.store.save(
            item_id,
            ItemOutcome(item_id=item_id, status=OutcomeStatus.SUCCEEDED, result=result),
        )
        return result

    async def run_batch(
        self,
        item_ids: Iterable[str],
        *,
        concurrency: int | None = None,
        on_partial_failure: PartialFailurePolicy | str = PartialFailurePolicy.AGGREGATE_AND_THROW,
    ) -> BatchOutcome:
        """Fan the processor out over ``item_ids`` (see :func:`run_bounded`).

        ``concurrency`` defaults to ``STEADFAST_FANOUT_CONCURRENCY``.
        """
        if concurrency is None:
            from steadfast.core.settings import SteadfastSettings

            concurrency = SteadfastSettings().fanout_concurrency
        return await run_bounded(
            item_ids,
            concurrency,
            self,
            on_partial_failure=on_partial_failure,
        )


class InMemoryItemStore:
    """Dict-backed :class:`ItemStore` for tests and local runs.

    A successful outcome sets the record's completion marker from
    :meth:`ItemOutcome.marker` and keeps the worker's return value on
    ``result`` (and, when ``result_field`` is set, in the payload under that
    name). A failed outcome records ``last_error`` and never clears an
    existing marker.
    """

    def __init__(
        self,
        records: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        result_field: str | None = None,
    ):
        self._records: dict[str, ItemRecord] = {
            item_id: ItemRecord(item_id=item_id, payload=dict(payload))
            for item_id, payload in (records or {}).items()
        }
        self.result_field = result_field
        self.saves: list[ItemOutcome] = []

    def add(self, item_id: str, payload: Mapping[str, Any] | None = None, marker: Any = None) -> None:
        self._records[item_id] = ItemRecord(item_id, dict(payload or {}), marker)

    def get(self, item_id: str) -> ItemRecord | None:
        return self._records.get(item_id)

    async def load(self, item_id: str) -> ItemRecord | None:
        record = self._records.get(item_id)
        if record is None:
            return None
        return ItemRecord(
            record.item_id,
            dict(record.payload),
            record.completion_marker,
            record.last_error,
            record.result,
        )

    async def save(self, item_id: str, outcome: ItemOutcome) -> None:
        record = self._records.setdefault(item_id, ItemRecord(item_id=item_id))
        self.saves.append(outcome)
        if outcome.status is OutcomeStatus.SUCCEEDED:
            record.completion_marker = outcome.marker()
            record.result = outcome.result
            record.last_error = None
            if self.result_field is not None:
                record.payload[self.result_field] = outcome.result
        elif outcome.status is OutcomeStatus.FAILED:
            record.last_error = outcome.error
