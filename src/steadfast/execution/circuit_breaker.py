"""Per-dependency circuit breaking.

Sheds load from a dependency that keeps failing: after
``failure_threshold`` consecutive failures, calls keyed to it are rejected
for ``cooldown`` seconds without being attempted.

States:
    CLOSED: Calls pass through, consecutive failures are counted
    OPEN: Calls rejected until ``opened_until``
    HALF_OPEN: Implicit. The first check at/after ``opened_until`` resets the
        key to closed with zero failures; that probe's outcome is recorded
        like any other, so one more failure below the threshold keeps it
        closed and reaching the threshold reopens it with a fresh cooldown.

Keying:
    One independent :class:`BreakerState` per string key
    (``"assemblyai:ad-transcripts"``, ``"kie:video"``), created lazily on
    first use and kept for the registry's lifetime.

Example:
    >>> registry = BreakerRegistry()
    >>> opts = BreakerOptions(failure_threshold=3, cooldown=60.0)
    >>> if registry.is_open("kie:video"):
    ...     raise BreakerOpenError("kie:video")
    >>> try:
    ...     result = await call()
    ...     registry.record_success("kie:video")
    ... except Exception:
    ...     registry.record_failure("kie:video", opts)
    ...     raise

Interleaving:
    Under asyncio two calls can both pass ``is_open`` before either records
    a failure. Counts are an approximate load-shedding signal, not an exact
    limiter. Mutations take a lock so the registry is also safe to share
    with worker threads.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from steadfast.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Observed breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # cooldown elapsed, next call is the probe


@dataclass(frozen=True)
class BreakerOptions:
    """Breaker tuning for one dependency.

    Attributes:
        failure_threshold: Consecutive failures that open the breaker
        cooldown: Seconds the breaker stays open
    """

    failure_threshold: int = 3
    cooldown: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.cooldown < 0:
            raise ValueError(f"cooldown must be >= 0, got {self.cooldown}")


@dataclass
class BreakerState:
    """Failure bookkeeping for one dependency key."""

    key: str
    consecutive_failures: int = 0
    opened_until: float | None = None


@dataclass
class BreakerStats:
    """Counters for monitoring one key."""

    successes: int = 0
    failures: int = 0
    rejections: int = 0
    times_opened: int = 0


@dataclass
class BreakerRegistry:
    """Keyed breaker states with an injectable monotonic ``clock``."""

    clock: Callable[[], float] = time.monotonic
    _states: dict[str, BreakerState] = field(default_factory=dict, init=False, repr=False)
    _stats: dict[str, BreakerStats] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def _state(self, key: str) -> BreakerState:
        st = self._states.get(key)
        if st is None:
            st = self._states[key] = BreakerState(key=key)
            self._stats[key] = BreakerStats()
        return st

    def is_open(self, key: str) -> bool:
        """True if calls for ``key`` must be rejected now.

        Resets the key lazily once ``opened_until`` has passed.
        """
        with self._lock:
            st = self._state(key)
            if st.opened_until is None:
                return False
            if self.clock() >= st.opened_until:
                st.consecutive_failures = 0
                st.opened_until = None
                logger.info("breaker.half_open", key=key)
                return False
            self._stats[key].rejections += 1
            return True

    def retry_in(self, key: str) -> float | None:
        """Seconds until an open breaker admits a probe."""
        with self._lock:
            st = self._states.get(key)
            if st is None or st.opened_until is None:
                return None
            return max(0.0, st.opened_until - self.clock())

    def record_success(self, key: str) -> None:
        with self._lock:
            st = self._state(key)
            st.consecutive_failures = 0
            st.opened_until = None
            self._stats[key].successes += 1

    def record_failure(self, key: str, options: BreakerOptions) -> None:
        with self._lock:
            st = self._state(key)
            st.consecutive_failures += 1
            self._stats[key].failures += 1
            if st.consecutive_failures >= options.failure_threshold:
                st.opened_until = self.clock() + options.cooldown
                self._stats[key].times_opened += 1
                logger.warning(
                    "breaker.opened",
                    key=key,
                    failures=st.consecutive_failures,
                    cooldown=options.cooldown,
                )
            else:
                st.opened_until = None

    def state(self, key: str) -> BreakerState:
        """Copy of the current state for ``key`` (no lazy reset)."""
        with self._lock:
            return replace(self._state(key))

    def circuit_state(self, key: str) -> CircuitState:
        with self._lock:
            st = self._state(key)
            if st.opened_until is None:
                return CircuitState.CLOSED
            if self.clock() >= st.opened_until:
                return CircuitState.HALF_OPEN
            return CircuitState.OPEN

    def stats(self, key: str) -> BreakerStats:
        with self._lock:
            self._state(key)
            return replace(self._stats[key])

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """All keys with state and counters, for health endpoints and logs."""
        with self._lock:
            return {
                key: {
                    "state": self.circuit_state(key).value,
                    "consecutive_failures": st.consecutive_failures,
                    "retry_in": self.retry_in(key),
                    **vars(self._stats[key]),
                }
                for key, st in self._states.items()
            }

    def reset(self, key: str | None = None) -> None:
        """Close one breaker, or all of them."""
        with self._lock:
            targets = [key] if key is not None else list(self._states)
            for k in targets:
                self._states[k] = BreakerState(key=k)
                self._stats[k] = BreakerStats()


_default_registry = BreakerRegistry()


def get_default_registry() -> BreakerRegistry:
    """Process-wide registry used when a caller does not pass one."""
    return _default_registry
