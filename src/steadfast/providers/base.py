"""Task provider protocol: the three verbs every remote provider exposes.

ARCHITECTURE
────────────
::

    TaskProvider (Protocol)
      ├── .submit(body)            → task id
      ├── .poll(task_id)           → PollResult (already normalized)
      └── .fetch_batch(dataset_id) → list[dict]

Provider state strings never leave the adapter raw: each adapter owns a
:class:`~steadfast.execution.polling.StatusMap` and returns canonical
:class:`~steadfast.execution.polling.ProviderStatus` values.

Implementors
------------
* ``HttpTaskProvider``     JSON-over-HTTP providers (httpx)
* ``ScriptedTaskProvider`` deterministic provider for tests
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from steadfast.execution.polling import PollResult


@runtime_checkable
class TaskProvider(Protocol):
    """Protocol for submit-then-poll remote providers."""

    name: str

    async def submit(self, body: dict[str, Any]) -> str:
        """Start a task; return the provider's task id."""
        ...

    async def poll(self, task_id: str) -> PollResult:
        """Fetch the current status of a task."""
        ...

    async def fetch_batch(self, dataset_id: str) -> list[dict[str, Any]]:
        """Fetch the items produced by a finished batch task."""
        ...
