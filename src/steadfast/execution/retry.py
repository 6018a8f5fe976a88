"""Bounded retry with exponential backoff and jitter.

Example:
    >>> policy = RetryPolicy(retries=2, base_delay=0.5, max_delay=5.0)
    >>> [round(policy.backoff(n), 2) for n in (1, 2, 3)]   # before jitter
    [0.5, 1.0, 2.0]
    >>> result = await with_retries(fetch, policy, is_retryable)

Semantics:
    - ``work`` runs at most ``1 + retries`` times.
    - The classifier is consulted after *every* failure, including the first;
      a classifier-negative error is re-raised at once.
    - The error that escapes is the one from the last attempt made.
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from steadfast.core.errors import is_retryable as default_is_retryable
from steadfast.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape (seconds).

    Delay before attempt ``n + 1`` = ``min(max_delay, base_delay * 2**(n-1)) + U(0, jitter)``

    Attributes:
        retries: Extra attempts after the first
        base_delay: Delay after the first failed attempt
        max_delay: Cap on the exponential part
        jitter: Upper bound of the uniform random jitter added to every delay
    """

    retries: int = 1
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.25

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays must be non-negative")

    @property
    def max_attempts(self) -> int:
        return 1 + self.retries

    def backoff(self, attempt: int) -> float:
        """Exponential part of the delay after 1-based ``attempt`` failed."""
        return min(self.max_delay, self.base_delay * (2 ** max(0, attempt - 1)))

    def next_delay(self, attempt: int) -> float:
        return self.backoff(attempt) + random.uniform(0, self.jitter)


NO_RETRY = RetryPolicy(retries=0)


@dataclass(frozen=True)
class RetryAttempt:
    """A failed attempt about to be retried."""

    attempt_number: int
    delay_before_next: float
    error: BaseException


async def with_retries(
    work: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    *,
    label: str = "operation",
    on_retry: Callable[[RetryAttempt], Any] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``work`` until it succeeds, the classifier says stop, or the budget runs out.

    Args:
        work: Zero-argument coroutine function; called once per attempt
        policy: Retry budget and backoff
        is_retryable: Classifier deciding whether an error may be retried
        label: Operation name for logs
        on_retry: Hook called before each backoff sleep
        sleep: Injectable sleep (tests)

    Raises:
        The last attempt's exception.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await work()
        except Exception as e:
            if attempt >= policy.max_attempts or not is_retryable(e):
                if attempt > 1:
                    logger.warning(
                        "retry.gave_up",
                        label=label,
                        attempts=attempt,
                        error=e,
                    )
                raise

            delay = policy.next_delay(attempt)
            logger.info(
                "retry.scheduled",
                label=label,
                attempt=attempt,
                delay=round(delay, 3),
                error=e,
            )
            if on_retry is not None:
                on_retry(RetryAttempt(attempt, delay, e))
            await sleep(delay)


def retrying(
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = default_is_retryable,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`with_retries` for coroutine functions.

    Example:
        >>> @retrying(RetryPolicy(retries=3))
        ... async def fetch_dataset(dataset_id):
        ...     ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retries(
                lambda: func(*args, **kwargs),
                policy,
                is_retryable,
                label=func.__name__,
            )

        return wrapper

    return decorator
