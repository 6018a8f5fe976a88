"""Timeout enforcement for remote calls.

``with_timeout`` races one unit of work against a deadline. Whichever
settles first decides the outcome; the deadline timer is always disarmed on
the non-timeout path.

Cancellation:
    On timeout the awaited task is cancelled, so adapters built on
    cancellable I/O (httpx, ``asyncio.sleep`` in polling loops) really abort
    the in-flight request instead of leaving it running. A
    :class:`CancellationToken` passed in is tripped as well, for code that
    checks it explicitly between steps (polling loops, multi-request
    adapters).

    Work that swallows ``CancelledError`` or runs in a thread keeps running
    in the background; the guard only stops *waiting* for it. Pass
    ``shield=True`` to choose that behaviour deliberately for operations
    that must not be interrupted half-way.

Examples:
    >>> result = await with_timeout(client.get(url), 10.0, "kie recordInfo")

    >>> token = CancellationToken()
    >>> await with_timeout(lambda: poll_loop(token), 600.0, "kie poll", token=token)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from steadfast.core.errors import OperationCancelledError, TimeoutExpired
from steadfast.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class CancellationToken:
    """Shared flag observed by both a timeout guard and the work it guards."""

    def __init__(self) -> None:
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Trip the token; idempotent."""
        if self._reason is not None:
            return
        self._reason = reason
        for callback in self._callbacks:
            callback(reason)

    def on_cancel(self, callback: Callable[[str], Any]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._reason is not None:
            callback(self._reason)
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelledError` once the token is tripped."""
        if self._reason is not None:
            raise OperationCancelledError(self._reason)


@dataclass
class Deadline:
    """Monotonic wall-clock budget.

    Attributes:
        seconds: Total budget
        start_time: When the budget started (``time.monotonic``)
    """

    seconds: float
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    start_time: float | None = None

    def __post_init__(self) -> None:
        if self.start_time is None:
            self.start_time = self.clock()

    def remaining(self) -> float:
        """Seconds left; negative once expired."""
        return self.start_time + self.seconds - self.clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self.start_time

    def is_expired(self) -> bool:
        return self.remaining() <= 0


async def with_timeout(
    work: Awaitable[T] | Callable[[], Awaitable[T]],
    seconds: float,
    label: str = "operation",
    *,
    token: CancellationToken | None = None,
    shield: bool = False,
) -> T:
    """Await ``work`` for at most ``seconds``.

    Args:
        work: An awaitable, or a zero-argument callable returning one
        seconds: Deadline in seconds
        label: Operation name for the error message
        token: Tripped when the deadline fires
        shield: Keep the underlying task running after a timeout

    Raises:
        TimeoutExpired: If ``work`` has not settled within ``seconds``
        ValueError: If ``seconds`` is not positive
    """
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {seconds}")

    awaitable = work() if callable(work) else work
    if shield:
        awaitable = asyncio.shield(asyncio.ensure_future(awaitable))

    start = time.monotonic()
    try:
        async with asyncio.timeout(seconds) as scope:
            return await awaitable
    except TimeoutError:
        if not scope.expired():
            # Raised by the work itself, not by our deadline.
            raise
        elapsed = time.monotonic() - start
        logger.warning("timeout.expired", label=label, timeout=seconds, elapsed=round(elapsed, 3))
        if token is not None:
            token.cancel(f"{label} timed out after {seconds:g}s")
        raise TimeoutExpired(label, seconds) from None
