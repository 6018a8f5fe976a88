"""
Shared pytest fixtures for steadfast tests.

This module provides:
- A manual monotonic clock and a sleep that advances it, so breaker
  cooldowns, retry delays and polling budgets run without real waiting
- An isolated BreakerRegistry per test
- Logging configured for console output

Usage:
    async def test_something(clock, fake_sleep, registry):
        await with_retries(work, policy, sleep=fake_sleep)
        assert fake_sleep.calls == [0.5]
"""

from __future__ import annotations

import pytest

from steadfast.core.logging import clear_context, configure_logging
from steadfast.execution.circuit_breaker import BreakerRegistry


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays and advances a ManualClock instead of waiting."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture(scope="session", autouse=True)
def _logging() -> None:
    configure_logging(level="DEBUG", json_format=False, service="steadfast-tests")


@pytest.fixture(autouse=True)
def _clean_log_context():
    yield
    clear_context()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fake_sleep(clock: ManualClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def registry(clock: ManualClock) -> BreakerRegistry:
    """Isolated breaker registry on the manual clock."""
    return BreakerRegistry(clock=clock)
