"""Tests for HttpTaskProvider against an httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from steadfast.core.errors import (
    ConfigError,
    OperationCancelledError,
    RateLimitError,
    RequestShapeError,
    ServiceUnavailableError,
    TerminalProviderError,
    UnknownProviderStateError,
)
from steadfast.execution.polling import ProviderStatus
from steadfast.execution.timeout import CancellationToken
from steadfast.providers import (
    APIFY_STATUS_MAP,
    KIE_STATUS_MAP,
    HttpProviderSpec,
    HttpTaskProvider,
    TaskProvider,
)

BASE_URL = "https://api.kie.ai/api/v1"

KIE = HttpProviderSpec(
    name="kie",
    submit_path="/jobs/createTask",
    poll_path="/jobs/recordInfo?taskId={task_id}",
    status_map=KIE_STATUS_MAP,
)

APIFY = HttpProviderSpec(
    name="apify",
    submit_path="/acts/actor/runs",
    poll_path="/actor-runs/{task_id}",
    batch_path="/datasets/{dataset_id}/items",
    status_map=APIFY_STATUS_MAP,
)


# ── Helpers ──────────────────────────────────────────────────────────────


class Server:
    """MockTransport handler answering from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.raw_path.decode())
        if key not in self.routes:
            return httpx.Response(404, json={"msg": f"no route {key}"})
        return self.routes[key]


def _provider(spec: HttpProviderSpec, routes: dict, **kwargs) -> tuple[HttpTaskProvider, Server]:
    server = Server(routes)
    client = httpx.AsyncClient(transport=httpx.MockTransport(server), base_url=BASE_URL)
    return HttpTaskProvider(spec, client=client, **kwargs), server


SUBMIT = ("POST", "/api/v1/jobs/createTask")


def _poll_route(task_id: str) -> tuple[str, str]:
    return ("GET", f"/api/v1/jobs/recordInfo?taskId={task_id}")


# ── submit ───────────────────────────────────────────────────────────────


class TestSubmit:
    def test_satisfies_protocol(self):
        provider, _ = _provider(KIE, {})
        assert isinstance(provider, TaskProvider)

    @pytest.mark.asyncio
    async def test_returns_task_id_and_sends_body(self):
        provider, server = _provider(
            KIE, {SUBMIT: httpx.Response(200, json={"code": 200, "data": {"taskId": "task-42"}})}
        )
        task_id = await provider.submit({"model": "sora-2-text-to-video-stable", "input": {"prompt": "p"}})

        assert task_id == "task-42"
        assert json.loads(server.requests[0].content)["model"] == "sora-2-text-to-video-stable"

    @pytest.mark.asyncio
    async def test_numeric_task_id(self):
        provider, _ = _provider(KIE, {SUBMIT: httpx.Response(200, json={"id": 1234})})
        assert await provider.submit({}) == "1234"

    @pytest.mark.asyncio
    async def test_field_required_body_is_shape_rejection(self):
        body = {"code": 422, "msg": "image_urls: This field is required", "data": None}
        provider, _ = _provider(KIE, {SUBMIT: httpx.Response(200, json=body)})
        with pytest.raises(RequestShapeError):
            await provider.submit({})

    @pytest.mark.asyncio
    async def test_error_detail_without_task_id_is_terminal(self):
        body = {"code": 402, "msg": "insufficient credits"}
        provider, _ = _provider(KIE, {SUBMIT: httpx.Response(200, json=body)})
        with pytest.raises(TerminalProviderError) as exc_info:
            await provider.submit({})
        assert exc_info.value.reason == "code=402 insufficient credits"

    @pytest.mark.asyncio
    async def test_empty_body_is_terminal(self):
        provider, _ = _provider(KIE, {SUBMIT: httpx.Response(200, json={})})
        with pytest.raises(TerminalProviderError, match="no task id"):
            await provider.submit({})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, expected",
        [
            (422, RequestShapeError),
            (401, ConfigError),
            (502, ServiceUnavailableError),
        ],
    )
    async def test_http_errors_are_classified(self, status, expected):
        provider, _ = _provider(KIE, {SUBMIT: httpx.Response(status, text="nope")})
        with pytest.raises(expected) as exc_info:
            await provider.submit({})
        assert exc_info.value.context.http_status == status
        assert exc_info.value.context.provider == "kie"

    @pytest.mark.asyncio
    async def test_rate_limit_reads_retry_after(self):
        response = httpx.Response(429, headers={"Retry-After": "7"}, text="slow down")
        provider, _ = _provider(KIE, {SUBMIT: response})
        with pytest.raises(RateLimitError) as exc_info:
            await provider.submit({})
        assert exc_info.value.retry_after == 7

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        provider, _ = _provider(KIE, {SUBMIT: httpx.Response(200, text="<html>gateway</html>")})
        with pytest.raises(TerminalProviderError, match="invalid JSON"):
            await provider.submit({})

    @pytest.mark.asyncio
    async def test_cancelled_token_blocks_request(self):
        token = CancellationToken()
        token.cancel("job aborted")
        provider, server = _provider(KIE, {}, token=token)
        with pytest.raises(OperationCancelledError, match="job aborted"):
            await provider.submit({})
        assert server.requests == []


# ── poll ─────────────────────────────────────────────────────────────────


class TestPoll:
    @pytest.mark.asyncio
    async def test_success_collects_result_urls(self):
        record = {
            "code": 200,
            "data": {
                "state": "success",
                "resultJson": json.dumps({"resultUrls": ["https://cdn/v1.mp4"]}),
            },
        }
        provider, _ = _provider(KIE, {_poll_route("t1"): httpx.Response(200, json=record)})

        result = await provider.poll("t1")

        assert result.status is ProviderStatus.SUCCEEDED
        assert result.result == ["https://cdn/v1.mp4"]
        assert result.raw_state == "success"
        assert result.payload == record

    @pytest.mark.asyncio
    async def test_empty_state_is_in_progress(self):
        provider, _ = _provider(
            KIE, {_poll_route("t1"): httpx.Response(200, json={"data": {"state": ""}})}
        )
        result = await provider.poll("t1")
        assert result.status is ProviderStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_failure_carries_provider_reason(self):
        record = {"data": {"state": "fail", "failMsg": "content policy violation", "code": 501}}
        provider, _ = _provider(KIE, {_poll_route("t1"): httpx.Response(200, json=record)})
        result = await provider.poll("t1")
        assert result.status is ProviderStatus.FAILED
        assert result.reason == "code=501 content policy violation"

    @pytest.mark.asyncio
    async def test_unmapped_state_raises(self):
        provider, _ = _provider(
            KIE, {_poll_route("t1"): httpx.Response(200, json={"data": {"state": "paused"}})}
        )
        with pytest.raises(UnknownProviderStateError):
            await provider.poll("t1")

    @pytest.mark.asyncio
    async def test_task_id_is_url_quoted(self):
        provider, server = _provider(KIE, {})
        with pytest.raises(RequestShapeError):
            await provider.poll("a/b")
        assert server.requests[0].url.raw_path.decode() == "/api/v1/jobs/recordInfo?taskId=a%2Fb"


# ── fetch_batch ──────────────────────────────────────────────────────────


class TestFetchBatch:
    @pytest.mark.asyncio
    async def test_list_payload(self):
        items = [{"adArchiveID": "1"}, {"adArchiveID": "2"}, "junk"]
        provider, _ = _provider(
            APIFY, {("GET", "/api/v1/datasets/ds-1/items"): httpx.Response(200, json=items)}
        )
        assert await provider.fetch_batch("ds-1") == [{"adArchiveID": "1"}, {"adArchiveID": "2"}]

    @pytest.mark.asyncio
    async def test_wrapped_payload(self):
        provider, _ = _provider(
            APIFY,
            {("GET", "/api/v1/datasets/ds-1/items"): httpx.Response(200, json={"data": {"items": [{"a": 1}]}})},
        )
        assert await provider.fetch_batch("ds-1") == [{"a": 1}]

    @pytest.mark.asyncio
    async def test_no_batch_endpoint(self):
        provider, _ = _provider(KIE, {})
        with pytest.raises(ConfigError, match="no batch endpoint"):
            await provider.fetch_batch("ds-1")

    @pytest.mark.asyncio
    async def test_apify_run_states(self):
        provider, _ = _provider(
            APIFY,
            {("GET", "/api/v1/actor-runs/run-1"): httpx.Response(200, json={"data": {"status": "TIMED-OUT"}})},
        )
        result = await provider.poll("run-1")
        assert result.status is ProviderStatus.FAILED
        assert result.raw_state == "TIMED-OUT"


# ── Client ownership ─────────────────────────────────────────────────────


class TestClientLifecycle:
    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        async with HttpTaskProvider(KIE, base_url=BASE_URL, headers={"Authorization": "Bearer k"}) as provider:
            assert provider.client.headers["Authorization"] == "Bearer k"
        assert provider.client.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_is_left_open(self):
        provider, _ = _provider(KIE, {}, headers={"X-Spend": "confirmed"})
        await provider.aclose()
        assert not provider.client.is_closed
        assert provider.client.headers["X-Spend"] == "confirmed"
