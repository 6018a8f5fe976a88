"""Resilience primitives for calls to remote dependencies.

Composition::

    run_bounded(items, K, ResumableItemProcessor(store, worker))
                                       │
                                       └── worker ─► GuardedCall
                                                      ├── BreakerRegistry
                                                      ├── with_retries
                                                      └── with_timeout

    generation workers: FallbackChain ─► GuardedCall ─► poll_until_complete
"""

from steadfast.execution.circuit_breaker import (
    BreakerOptions,
    BreakerRegistry,
    BreakerState,
    CircuitState,
    get_default_registry,
)
from steadfast.execution.fallback import FallbackChain, FallbackResult, FallbackStep, ProviderConfig
from steadfast.execution.fanout import BatchOutcome, ItemFailure, PartialFailurePolicy, Skipped, run_bounded
from steadfast.execution.guarded import GuardedCall, guarded_call
from steadfast.execution.polling import (
    PollResult,
    ProviderStatus,
    StatusMap,
    TaskState,
    TaskTracker,
    poll_until_complete,
)
from steadfast.execution.resumable import (
    InMemoryItemStore,
    ItemOutcome,
    ItemRecord,
    ItemStore,
    OutcomeStatus,
    ResumableItemProcessor,
    WorkItem,
    mapping_field,
    non_empty_field,
)
from steadfast.execution.retry import NO_RETRY, RetryAttempt, RetryPolicy, retrying, with_retries
from steadfast.execution.timeout import CancellationToken, Deadline, with_timeout

__all__ = [
    # timeout
    "with_timeout",
    "CancellationToken",
    "Deadline",
    # retry
    "RetryPolicy",
    "RetryAttempt",
    "NO_RETRY",
    "with_retries",
    "retrying",
    # breaker
    "BreakerOptions",
    "BreakerRegistry",
    "BreakerState",
    "CircuitState",
    "get_default_registry",
    # guarded
    "GuardedCall",
    "guarded_call",
    # fan-out
    "run_bounded",
    "BatchOutcome",
    "ItemFailure",
    "PartialFailurePolicy",
    "Skipped",
    # resumable
    "ResumableItemProcessor",
    "ItemStore",
    "InMemoryItemStore",
    "ItemRecord",
    "ItemOutcome",
    "OutcomeStatus",
    "WorkItem",
    "non_empty_field",
    "mapping_field",
    # fallback
    "FallbackChain",
    "FallbackResult",
    "FallbackStep",
    "ProviderConfig",
    # polling
    "poll_until_complete",
    "PollResult",
    "ProviderStatus",
    "StatusMap",
    "TaskState",
    "TaskTracker",
]
