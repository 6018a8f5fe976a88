"""Guarded remote calls: circuit breaker → retry → timeout.

Every remote call in a pipeline is wrapped exactly once at this layer::

    guarded_call(fn)
      │
      ├── breaker open for key? ── yes ──► BreakerOpenError (fn never called)
      │
      ├── with_retries(
      │       with_timeout(fn(), timeout)   ← raw errors re-classified here
      │   , retry, is_retryable)
      │
      ├── success ──► registry.record_success(key)
      └── failure ──► registry.record_failure(key)  (unless the error says
                      it doesn't count: ConfigError, BreakerOpenError,
                      RequestShapeError) ──► re-raise

Wrapping the same call again at an outer layer multiplies retries and
double-counts breaker failures; build the guard once per dependency with
:class:`GuardedCall` (or ``GuardSettings.to_guarded_call``) and reuse it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from steadfast.core.errors import (
    BreakerOpenError,
    SteadfastError,
    TimeoutExpired,
    classify_exception,
    counts_against_breaker,
    is_retryable as default_is_retryable,
    one_line,
)
from steadfast.core.logging import get_logger
from steadfast.execution.circuit_breaker import BreakerOptions, BreakerRegistry, get_default_registry
from steadfast.execution.retry import RetryAttempt, RetryPolicy, with_retries
from steadfast.execution.timeout import CancellationToken, with_timeout

T = TypeVar("T")

logger = get_logger(__name__)


async def guarded_call(
    *,
    breaker_key: str,
    breaker: BreakerOptions,
    timeout: float,
    retry: RetryPolicy,
    fn: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    label: str | None = None,
    registry: BreakerRegistry | None = None,
    token: CancellationToken | None = None,
    on_retry: Callable[[RetryAttempt], Any] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``fn`` behind the breaker for ``breaker_key`` with timeout and retries.

    Args:
        breaker_key: Logical dependency (``"kie:video"``)
        breaker: Threshold and cooldown for that key
        timeout: Per-attempt deadline in seconds
        retry: Retry budget for transient failures
        fn: Zero-argument coroutine function; invoked once per attempt
        is_retryable: Classifier applied to the re-classified error
        label: Operation name for logs and errors (defaults to the key)
        registry: Breaker registry (defaults to the process-wide one)
        token: Checked before each attempt; tripped once the last attempt times out
        on_retry: Hook called before each backoff sleep
        sleep: Injectable sleep (tests)

    Raises:
        BreakerOpenError: The breaker is open; ``fn`` was not called
        Exception: The last attempt's (re-classified) error
    """
    registry = registry if registry is not None else get_default_registry()
    label = label or breaker_key

    if registry.is_open(breaker_key):
        logger.info("guarded_call.rejected", key=breaker_key, label=label)
        raise BreakerOpenError(breaker_key, label, registry.retry_in(breaker_key))

    async def attempt() -> T:
        if token is not None:
            token.raise_if_cancelled()
        try:
            return await with_timeout(fn, timeout, label)
        except Exception as e:
            classified = classify_exception(e)
            if classified is e:
                raise
            raise classified from e

    try:
        result = await with_retries(
            attempt,
            retry,
            is_retryable,
            label=label,
            on_retry=on_retry,
            sleep=sleep,
        )
    except Exception as e:
        if isinstance(e, SteadfastError) and e.context.dependency is None:
            e.context.dependency = breaker_key
        if counts_against_breaker(e):
            registry.record_failure(breaker_key, breaker)
        if token is not None and isinstance(e, TimeoutExpired):
            # Tripped after the last attempt only, so retries still run.
            token.cancel(one_line(e))
        logger.warning(
            "guarded_call.failed",
            key=breaker_key,
            label=label,
            error=e,
        )
        raise

    registry.record_success(breaker_key)
    return result


@dataclass
class GuardedCall:
    """Reusable guard for one dependency.

    Example:
        >>> transcripts = GuardedCall(
        ...     breaker_key="assemblyai:ad-transcripts",
        ...     breaker=BreakerOptions(failure_threshold=3, cooldown=60.0),
        ...     timeout=120.0,
        ...     retry=RetryPolicy(retries=1, base_delay=0.5, max_delay=5.0),
        ... )
        >>> transcript = await transcripts(lambda: client.transcribe(url))
    """

    breaker_key: str
    breaker: BreakerOptions = field(default_factory=BreakerOptions)
    timeout: float = 120.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    is_retryable: Callable[[BaseException], bool] = default_is_retryable
    label: str | None = None
    registry: BreakerRegistry | None = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        label: str | None = None,
        token: CancellationToken | None = None,
    ) -> T:
        return await guarded_call(
            breaker_key=self.breaker_key,
            breaker=self.breaker,
            timeout=self.timeout,
            retry=self.retry,
            fn=fn,
            is_retryable=self.is_retryable,
            label=label or self.label,
            registry=self.registry,
            token=token,
            sleep=self.sleep,
        )

    __call__ = call

    def is_open(self) -> bool:
        registry = self.registry if self.registry is not None else get_default_registry()
        return registry.is_open(self.breaker_key)
