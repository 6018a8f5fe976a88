"""Scene video generation against a submit-then-poll provider.

One scene goes through three guarded stages::

    FallbackChain over provider configs
      │  image-to-video (stable) → image-to-video → text-to-video (stable) → text-to-video
      │  (no reference images: start at text-to-video)
      ▼
    submit  ── GuardedCall(breaker "kie:video") ──► task id
      ▼
    poll_until_complete ── each poll GuardedCall'd, fixed interval ──► result urls
      ▼
    SceneResult(video_url = first result url)

Only a request-shape rejection moves the chain to the next configuration;
transient errors are retried by the submit guard on the same configuration.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from steadfast.core.errors import TerminalProviderError
from steadfast.core.logging import get_logger
from steadfast.core.settings import GuardSettings, require_env
from steadfast.execution.circuit_breaker import BreakerRegistry
from steadfast.execution.fallback import FallbackChain, ProviderConfig
from steadfast.execution.guarded import GuardedCall
from steadfast.execution.polling import PollResult, TaskTracker, poll_until_complete
from steadfast.generation.scenes import SceneResult, SceneTask
from steadfast.providers.base import TaskProvider
from steadfast.providers.http import HttpProviderSpec, HttpTaskProvider
from steadfast.providers.status_maps import KIE_STATUS_MAP

logger = get_logger(__name__)

KIE_BASE_URL = "https://api.kie.ai/api/v1"
KIE_IMAGE_TO_VIDEO_MODEL = "sora-2-image-to-video-stable"
KIE_TEXT_TO_VIDEO_MODEL = "sora-2-text-to-video-stable"
KIE_IMAGE_TO_VIDEO_MODEL_FALLBACK = "sora-2-image-to-video"
KIE_TEXT_TO_VIDEO_MODEL_FALLBACK = "sora-2-text-to-video"

# Video tasks take minutes: poll every 30s for up to 24 polls.
KIE_GUARD_DEFAULTS = {"timeout": 60.0, "poll_interval": 30.0, "poll_budget": 720.0}

KIE_VIDEO_SPEC = HttpProviderSpec(
    name="kie",
    submit_path="/jobs/createTask",
    poll_path="/jobs/recordInfo?taskId={task_id}",
    status_map=KIE_STATUS_MAP,
)


def kie_video_body(scene: SceneTask, config: ProviderConfig[SceneTask]) -> dict[str, Any]:
    """Request body for KIE's createTask."""
    body_input: dict[str, Any] = {
        "prompt": scene.prompt,
        "aspect_ratio": "portrait",
        "n_frames": str(scene.target_duration),
        "upload_method": "s3",
    }
    if config.requires_reference_images:
        body_input["image_urls"] = scene.image_urls
    return {"model": config.model_id, "input": body_input}


def kie_video_chain(
    *,
    image_model: str = KIE_IMAGE_TO_VIDEO_MODEL,
    text_model: str = KIE_TEXT_TO_VIDEO_MODEL,
    image_fallback_model: str = KIE_IMAGE_TO_VIDEO_MODEL_FALLBACK,
    text_fallback_model: str = KIE_TEXT_TO_VIDEO_MODEL_FALLBACK,
) -> FallbackChain[SceneTask]:
    return FallbackChain(
        [
            ProviderConfig("kie:image-to-video", image_model, kie_video_body, requires_reference_images=True),
            ProviderConfig("kie:image-to-video-fallback", image_fallback_model, kie_video_body, requires_reference_images=True),
            ProviderConfig("kie:text-to-video", text_model, kie_video_body),
            ProviderConfig("kie:text-to-video-fallback", text_fallback_model, kie_video_body),
        ],
        name="kie:video",
    )


class VideoGenerator:
    """Generates one scene video at a time.

    Args:
        provider: Submit/poll adapter
        chain: Provider configurations to fall back through
        guard: Guard applied to every submit and poll call
        poll_interval: Seconds between polls
        poll_budget: Wall-clock seconds before a task is TIMED_OUT
    """

    def __init__(
        self,
        provider: TaskProvider,
        chain: FallbackChain[SceneTask],
        guard: GuardedCall,
        *,
        poll_interval: float = 30.0,
        poll_budget: float = 720.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.chain = chain
        self.guard = guard
        self.poll_interval = poll_interval
        self.poll_budget = poll_budget
        self._sleep = sleep
        self._clock = clock

    async def _submit(self, config: ProviderConfig[SceneTask], body: dict[str, Any]) -> str:
        return await self.guard(
            lambda: self.provider.submit(body),
            label=f"{config.name} submit",
        )

    async def _poll(self, task_id: str) -> PollResult:
        return await self.guard(
            lambda: self.provider.poll(task_id),
            label=f"{self.provider.name} poll",
        )

    async def generate(self, scene: SceneTask) -> SceneResult:
        if not scene.prompt.strip():
            raise ValueError(f"Scene {scene.scene_id} missing video prompt")

        submitted = await self.chain.run(
            scene,
            self._submit,
            has_reference_images=scene.has_reference_images,
        )
        task_id = submitted.value
        logger.info(
            "video.submitted",
            scene_id=scene.scene_id,
            scene_number=scene.scene_number,
            task_id=task_id,
            config=submitted.config.name,
            fallbacks=len(submitted.steps),
        )

        tracker = TaskTracker(task_id)
        done = await poll_until_complete(
            self._poll,
            task_id,
            interval=self.poll_interval,
            budget=self.poll_budget,
            label=self.provider.name,
            tracker=tracker,
            sleep=self._sleep,
            clock=self._clock,
        )
        urls = done.result or []
        if not urls:
            raise TerminalProviderError(f"{self.provider.name} task {task_id} succeeded with no result urls")

        return SceneResult(
            scene_id=scene.scene_id,
            scene_number=scene.scene_number,
            video_url=urls[0],
            provider_task_id=task_id,
            provider_payload={
                "provider": self.provider.name,
                "task_id": task_id,
                "config": submitted.config.name,
                "model": submitted.config.model_id,
                "prompt": scene.prompt,
                "image_inputs": scene.image_urls,
                "reference_frames": [image.to_dict() for image in scene.reference_images],
                "n_frames": scene.target_duration,
                "polls": tracker.polls,
            },
        )

    __call__ = generate


def build_kie_video_generator(
    *,
    settings: GuardSettings | None = None,
    environ: Mapping[str, str] | None = None,
    registry: BreakerRegistry | None = None,
    client: httpx.AsyncClient | None = None,
) -> VideoGenerator:
    """Wire a :class:`VideoGenerator` for KIE from the environment.

    Reads ``KIE_API_KEY`` (required), ``KIE_API_BASE``, the optional
    ``KIE_SPEND_CONFIRM_HEADER`` / ``KIE_SPEND_CONFIRM_VALUE`` pair, model
    overrides and the ``KIE_*`` guard settings.

    Raises:
        MissingConfigError: ``KIE_API_KEY`` is unset
    """
    env = os.environ if environ is None else environ
    api_key = require_env(["KIE_API_KEY"], "KIE", env)["KIE_API_KEY"]
    settings = settings or GuardSettings.for_dependency("KIE", defaults=KIE_GUARD_DEFAULTS)

    headers = {"Authorization": f"Bearer {api_key}"}
    spend_header = (env.get("KIE_SPEND_CONFIRM_HEADER") or "").strip()
    spend_value = (env.get("KIE_SPEND_CONFIRM_VALUE") or "").strip()
    if spend_header and spend_value:
        headers[spend_header] = spend_value

    provider = HttpTaskProvider(
        KIE_VIDEO_SPEC,
        base_url=env.get("KIE_API_BASE") or KIE_BASE_URL,
        headers=headers,
        client=client,
    )
    chain = kie_video_chain(
        image_model=env.get("KIE_IMAGE_TO_VIDEO_MODEL") or KIE_IMAGE_TO_VIDEO_MODEL,
        text_model=env.get("KIE_TEXT_TO_VIDEO_MODEL") or KIE_TEXT_TO_VIDEO_MODEL,
    )
    return VideoGenerator(
        provider,
        chain,
        settings.to_guarded_call("kie:video", registry=registry),
        poll_interval=settings.poll_interval,
        poll_budget=settings.poll_budget,
    )
