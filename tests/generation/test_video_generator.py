"""Tests for VideoGenerator with a scripted provider."""

from __future__ import annotations

import pytest

from steadfast.core.errors import (
    FallbackExhaustedError,
    MissingConfigError,
    PollTimeoutError,
    RequestShapeError,
    ServiceUnavailableError,
    TerminalProviderError,
)
from steadfast.core.settings import GuardSettings
from steadfast.execution.circuit_breaker import BreakerOptions
from steadfast.execution.guarded import GuardedCall
from steadfast.execution.polling import PollResult, ProviderStatus
from steadfast.execution.retry import NO_RETRY, RetryPolicy
from steadfast.generation import (
    ReferenceImage,
    ReferenceKind,
    SceneTask,
    VideoGenerator,
    build_kie_video_generator,
    kie_video_chain,
)
from steadfast.providers import ScriptedTaskProvider

RUNNING = PollResult(ProviderStatus.IN_PROGRESS, raw_state="generating")


def _done(url: str) -> PollResult:
    return PollResult(ProviderStatus.SUCCEEDED, result=[url], raw_state="success")


def _scene(number: int = 1, *, images: bool = True) -> SceneTask:
    refs = (
        [
            ReferenceImage(ReferenceKind.CHARACTER, "character", "https://cdn/c.png"),
            ReferenceImage(ReferenceKind.PRODUCT, "product", "https://cdn/p.png"),
        ]
        if images
        else []
    )
    return SceneTask(f"scene-{number}", number, f"prompt {number}", reference_images=refs, target_duration=15)


@pytest.fixture
def provider() -> ScriptedTaskProvider:
    return ScriptedTaskProvider("kie")


@pytest.fixture
def generator(provider, registry, clock, fake_sleep) -> VideoGenerator:
    guard = GuardedCall(
        breaker_key="kie:video",
        breaker=BreakerOptions(failure_threshold=3, cooldown=60.0),
        timeout=5.0,
        retry=NO_RETRY,
        registry=registry,
        sleep=fake_sleep,
    )
    return VideoGenerator(
        provider, kie_video_chain(), guard, poll_interval=30.0, poll_budget=720.0, sleep=fake_sleep, clock=clock
    )


# ── Generation ───────────────────────────────────────────────────────────


class TestGenerate:
    @pytest.mark.asyncio
    async def test_image_to_video_happy_path(self, generator, provider, fake_sleep):
        provider.queue_submit("task-1")
        provider.queue_poll("task-1", RUNNING, RUNNING, _done("https://v/1.mp4"))

        result = await generator(_scene())

        assert result.video_url == "https://v/1.mp4"
        assert result.provider_task_id == "task-1"
        body = provider.submitted[0]
        assert body["model"] == "sora-2-image-to-video-stable"
        assert body["input"]["image_urls"] == ["https://cdn/c.png", "https://cdn/p.png"]
        assert body["input"]["n_frames"] == "15"
        assert fake_sleep.calls == [30.0, 30.0]
        assert result.provider_payload["config"] == "kie:image-to-video"
        assert result.provider_payload["polls"] == 3
        assert [f["kind"] for f in result.provider_payload["reference_frames"]] == ["character", "product"]

    @pytest.mark.asyncio
    async def test_zero_reference_images_start_at_text_to_video(self, generator, provider):
        provider.queue_submit("task-1")
        provider.queue_poll("task-1", _done("https://v/1.mp4"))

        result = await generator(_scene(images=False))

        assert len(provider.submitted) == 1
        body = provider.submitted[0]
        assert body["model"] == "sora-2-text-to-video-stable"
        assert "image_urls" not in body["input"]
        assert result.provider_payload["config"] == "kie:text-to-video"

    @pytest.mark.asyncio
    async def test_shape_rejection_falls_back(self, generator, provider):
        provider.queue_submit(RequestShapeError("kie returned HTTP 422: image_urls invalid"), "task-2")
        provider.queue_poll("task-2", _done("https://v/2.mp4"))

        result = await generator(_scene())

        assert [b["model"] for b in provider.submitted] == [
            "sora-2-image-to-video-stable",
            "sora-2-image-to-video",
        ]
        assert result.provider_payload["model"] == "sora-2-image-to-video"

    @pytest.mark.asyncio
    async def test_every_config_rejected(self, generator, provider):
        provider.queue_submit(*(RequestShapeError(f"bad {n}") for n in range(4)))
        with pytest.raises(FallbackExhaustedError):
            await generator(_scene())
        assert len(provider.submitted) == 4

    @pytest.mark.asyncio
    async def test_transient_submit_failure_does_not_fall_back(self, generator, provider):
        provider.queue_submit(ServiceUnavailableError("kie returned HTTP 503"))
        with pytest.raises(ServiceUnavailableError):
            await generator(_scene())
        assert len(provider.submitted) == 1

    @pytest.mark.asyncio
    async def test_retry_on_same_config(self, provider, registry, clock, fake_sleep):
        guard = GuardedCall(
            breaker_key="kie:video",
            retry=RetryPolicy(retries=1, base_delay=0.5, jitter=0),
            registry=registry,
            sleep=fake_sleep,
        )
        generator = VideoGenerator(provider, kie_video_chain(), guard, sleep=fake_sleep, clock=clock)
        provider.queue_submit(ServiceUnavailableError("503"), "task-1")
        provider.queue_poll("task-1", _done("https://v/1.mp4"))

        await generator(_scene())

        assert [b["model"] for b in provider.submitted] == ["sora-2-image-to-video-stable"] * 2

    @pytest.mark.asyncio
    async def test_provider_failure_is_terminal(self, generator, provider):
        provider.queue_submit("task-1")
        provider.queue_poll(
            "task-1", PollResult(ProviderStatus.FAILED, reason="code=501 policy", raw_state="fail")
        )
        with pytest.raises(TerminalProviderError, match="code=501 policy"):
            await generator(_scene())

    @pytest.mark.asyncio
    async def test_poll_budget_exhausted(self, generator, provider):
        provider.queue_submit("task-1")
        provider.queue_poll("task-1", RUNNING)
        with pytest.raises(PollTimeoutError):
            await generator(_scene())
        assert len(provider.polled) == 25

    @pytest.mark.asyncio
    async def test_success_without_urls(self, generator, provider):
        provider.queue_submit("task-1")
        provider.queue_poll("task-1", PollResult(ProviderStatus.SUCCEEDED, result=[]))
        with pytest.raises(TerminalProviderError, match="no result urls"):
            await generator(_scene())

    @pytest.mark.asyncio
    async def test_blank_prompt(self, generator, provider):
        scene = _scene()
        scene.prompt = "  "
        with pytest.raises(ValueError, match="missing video prompt"):
            await generator(scene)
        assert provider.submitted == []


# ── Wiring ───────────────────────────────────────────────────────────────


class TestBuild:
    def test_missing_api_key(self):
        with pytest.raises(MissingConfigError, match="KIE_API_KEY"):
            build_kie_video_generator(environ={}, settings=GuardSettings())

    def test_headers_and_models_from_environment(self, registry):
        env = {
            "KIE_API_KEY": "secret",
            "KIE_SPEND_CONFIRM_HEADER": "X-Spend-Confirm",
            "KIE_SPEND_CONFIRM_VALUE": "yes",
            "KIE_TEXT_TO_VIDEO_MODEL": "sora-3-text",
        }
        generator = build_kie_video_generator(
            environ=env, settings=GuardSettings(poll_interval=10.0), registry=registry
        )

        client = generator.provider.client
        assert client.headers["Authorization"] == "Bearer secret"
        assert client.headers["X-Spend-Confirm"] == "yes"
        assert str(client.base_url).startswith("https://api.kie.ai/api/v1")
        assert [c.model_id for c in generator.chain.configs][2] == "sora-3-text"
        assert generator.poll_interval == 10.0
        assert generator.guard.breaker_key == "kie:video"
        assert generator.guard.registry is registry
