"""httpx-backed adapter for JSON submit-then-poll providers.

Wire-format specifics live in an :class:`HttpProviderSpec`: endpoints,
the status table and one :class:`~steadfast.core.fields.FieldResolver` per
field the adapter reads. The adapter itself only knows the three verbs and
how to turn HTTP failures into the error taxonomy:

=====================================  ==================================
Response                               Raised
=====================================  ==================================
429                                    ``RateLimitError`` (Retry-After)
401 / 403                              ``ConfigError``
other 4xx                              ``RequestShapeError``
5xx                                    ``ServiceUnavailableError``
200 without task id, "field required"  ``RequestShapeError``
200 without task id, error detail      ``TerminalProviderError``
unmapped task state                    ``UnknownProviderStateError``
=====================================  ==================================

Requests are plain awaits on ``httpx.AsyncClient``, so cancelling the
awaiting task (a timeout, a tripped :class:`CancellationToken`) aborts the
in-flight request.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from steadfast.core.errors import (
    ConfigError,
    RequestShapeError,
    TerminalProviderError,
    classify_http_status,
    looks_like_shape_rejection,
)
from steadfast.core.fields import FieldResolver, first_number
from steadfast.core.logging import get_logger
from steadfast.execution.polling import PollResult, ProviderStatus, StatusMap
from steadfast.execution.timeout import CancellationToken

logger = get_logger(__name__)

DEFAULT_TASK_ID = FieldResolver(
    "task_id", ("taskId", "id", "data.taskId", "data.id", "result.taskId")
)
DEFAULT_STATE = FieldResolver("state", ("data.state", "state", "status", "data.status"))
DEFAULT_RESULT_URLS = FieldResolver(
    "result_urls",
    (
        "data.resultUrls",
        "data.result.resultUrls",
        "data.result.video_url",
        "data.result.videoUrl",
        "data.result.url",
        "data.resultJson.resultUrls",
        "data.resultJson.resultUrl",
        "data.resultJson.video_url",
        "data.resultJson.videoUrl",
        "data.resultJson.url",
        "data.resultJson.data.resultUrls",
    ),
)
DEFAULT_ERROR_MESSAGE = FieldResolver(
    "error_message",
    (
        "msg",
        "message",
        "error",
        "data.msg",
        "data.message",
        "data.error",
        "data.reason",
        "data.failReason",
        "data.fail_reason",
        "data.failMsg",
    ),
)
DEFAULT_ERROR_CODE = FieldResolver("error_code", ("code", "data.code"))


@dataclass(frozen=True)
class HttpProviderSpec:
    """Endpoints and field layout of one JSON provider.

    ``poll_path`` and ``batch_path`` are formatted with ``task_id`` and
    ``dataset_id`` respectively.
    """

    name: str
    submit_path: str
    poll_path: str
    status_map: StatusMap
    batch_path: str | None = None
    task_id: FieldResolver = DEFAULT_TASK_ID
    state: FieldResolver = DEFAULT_STATE
    result_urls: FieldResolver = DEFAULT_RESULT_URLS
    error_message: FieldResolver = DEFAULT_ERROR_MESSAGE
    error_code: FieldResolver = DEFAULT_ERROR_CODE
    batch_items: FieldResolver = field(default_factory=lambda: FieldResolver("items", ("items", "data.items")))


def error_detail(spec: HttpProviderSpec, payload: Any) -> str | None:
    """``"code=422 msg"`` from whichever error fields the payload carries."""
    code = spec.error_code.candidates(payload)
    code = next((c for c in code if c is not None), None)
    message = spec.error_message.resolve_str(payload)
    if message is None and code is None:
        return None
    parts = [f"code={code}" if code is not None else None, message]
    return " ".join(p for p in parts if p)


def _compact(payload: Any) -> str:
    try:
        return json.dumps(payload, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(payload)


def _retry_after(response: httpx.Response) -> float | None:
    return first_number(response.headers.get("retry-after"))


class HttpTaskProvider:
    """:class:`~steadfast.providers.base.TaskProvider` over JSON/HTTP."""

    def __init__(
        self,
        spec: HttpProviderSpec,
        *,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        token: CancellationToken | None = None,
    ):
        self.spec = spec
        self.name = spec.name
        self.token = token
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
        )
        if client is not None and headers:
            self.client.headers.update(headers)

    async def __aenter__(self) -> HttpTaskProvider:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        if self.token is not None:
            self.token.raise_if_cancelled()
        response = await self.client.request(method, url, **kwargs)
        if response.is_error:
            raise classify_http_status(
                response.status_code,
                response.text,
                provider=self.name,
                retry_after=_retry_after(response),
            )
        try:
            return response.json()
        except ValueError:
            raise TerminalProviderError(
                f"{self.name} returned invalid JSON: {response.text[:300]}"
            ) from None

    async def submit(self, body: dict[str, Any]) -> str:
        payload = await self._request("POST", self.spec.submit_path, json=body)

        task_id = self.spec.task_id.resolve_str(payload)
        if task_id is None:
            number = self.spec.task_id.resolve_number(payload)
            task_id = None if number is None else str(int(number))
        if task_id is not None:
            logger.debug("provider.submitted", provider=self.name, task_id=task_id)
            return task_id

        compact = _compact(payload)
        if looks_like_shape_rejection(compact):
            raise RequestShapeError(f"{self.name} rejected request shape: {compact[:300]}")
        detail = error_detail(self.spec, payload)
        if detail:
            raise TerminalProviderError(f"{self.name} rejected task: {detail}", reason=detail)
        raise TerminalProviderError(f"{self.name} returned no task id: {compact[:300]}")

    async def poll(self, task_id: str) -> PollResult:
        payload = await self._request(
            "GET", self.spec.poll_path.format(task_id=quote(task_id, safe=""))
        )
        raw_state = self.spec.state.resolve_str(payload)
        status = self.spec.status_map.normalize(raw_state)

        reason = None
        result = None
        if status is ProviderStatus.FAILED:
            reason = error_detail(self.spec, payload)
        elif status is ProviderStatus.SUCCEEDED:
            result = self.spec.result_urls.resolve_all_str(payload)

        return PollResult(
            status=status,
            result=result,
            reason=reason,
            raw_state=raw_state,
            payload=payload,
        )

    async def fetch_batch(self, dataset_id: str) -> list[dict[str, Any]]:
        if self.spec.batch_path is None:
            raise ConfigError(f"{self.name} has no batch endpoint configured")
        payload = await self._request(
            "GET", self.spec.batch_path.format(dataset_id=quote(dataset_id, safe=""))
        )
        if isinstance(payload, list):
            items = payload
        else:
            items = next(
                (c for c in self.spec.batch_items.candidates(payload) if isinstance(c, list)),
                [],
            )
        return [item for item in items if isinstance(item, dict)]
