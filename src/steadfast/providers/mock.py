"""Scripted task provider for tests and local dry runs.

Responses are queued up front; every call pops the next one. A queued
exception instance is raised instead of returned.

Example::

    provider = ScriptedTaskProvider("kie")
    provider.queue_submit("task-1")
    provider.queue_poll("task-1", PollResult(ProviderStatus.IN_PROGRESS),
                        PollResult(ProviderStatus.SUCCEEDED, result=["https://v/1.mp4"]))
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Any

from steadfast.execution.polling import PollResult


class ScriptedTaskProvider:
    """In-memory :class:`~steadfast.providers.base.TaskProvider`."""

    def __init__(self, name: str = "scripted"):
        self.name = name
        self.submitted: list[dict[str, Any]] = []
        self.polled: list[str] = []
        self._submits: deque[str | BaseException] = deque()
        self._polls: dict[str, deque[PollResult | BaseException]] = defaultdict(deque)
        self._batches: dict[str, list[dict[str, Any]]] = {}

    def queue_submit(self, *responses: str | BaseException) -> None:
        self._submits.extend(responses)

    def queue_poll(self, task_id: str, *responses: PollResult | BaseException) -> None:
        self._polls[task_id].extend(responses)

    def set_batch(self, dataset_id: str, items: list[dict[str, Any]]) -> None:
        self._batches[dataset_id] = items

    async def submit(self, body: dict[str, Any]) -> str:
        self.submitted.append(body)
        if not self._submits:
            raise AssertionError(f"{self.name}: unexpected submit {body!r}")
        response = self._submits.popleft()
        if isinstance(response, BaseException):
            raise response
        return response

    async def poll(self, task_id: str) -> PollResult:
        self.polled.append(task_id)
        queue = self._polls[task_id]
        if not queue:
            raise AssertionError(f"{self.name}: unexpected poll for {task_id}")
        response = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response

    async def fetch_batch(self, dataset_id: str) -> list[dict[str, Any]]:
        try:
            return list(self._batches[dataset_id])
        except KeyError:
            raise AssertionError(f"{self.name}: no batch {dataset_id}") from None
