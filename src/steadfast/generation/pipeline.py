"""Sequential scene generation with per-scene persistence.

Scenes are deliberately *not* fanned out: later scenes may build on earlier
ones, and a failure half-way must leave every already-generated scene
saved. The loop therefore:

1. sorts scenes by ``scene_number``
2. skips scenes that already have an output URL
3. generates one scene, persists it, then moves on
4. on the first failure raises :class:`SceneGenerationError` naming the
   scene and how many scenes succeeded before it

A rerun after a failure resumes at the failed scene.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from steadfast.core.errors import SceneGenerationError
from steadfast.core.logging import get_logger
from steadfast.generation.scenes import SceneResult, SceneTask

logger = get_logger(__name__)

GenerateScene = Callable[[SceneTask], Awaitable[SceneResult]]
PersistScene = Callable[[SceneResult], Awaitable[None]]


@dataclass
class SceneRunResult:
    """What one pass over a storyboard did."""

    scene_count: int
    generated: list[SceneResult] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)
    existing_urls: list[str] = field(default_factory=list)

    @property
    def video_urls(self) -> list[str]:
        return self.existing_urls + [r.video_url for r in self.generated]

    @property
    def task_ids(self) -> list[str]:
        return [r.provider_task_id for r in self.generated]

    @property
    def already_generated(self) -> bool:
        return not self.generated and len(self.skipped_ids) == self.scene_count

    def summary(self) -> str:
        if self.already_generated:
            return f"{self.scene_count}/{self.scene_count} scenes already generated"
        text = f"{len(self.generated)} scene(s) generated"
        if self.skipped_ids:
            text += f", {len(self.skipped_ids)} already done"
        return text


async def generate_scenes(
    scenes: Iterable[SceneTask],
    generate: GenerateScene,
    persist: PersistScene,
) -> SceneRunResult:
    """Generate every scene without an output, one at a time, in order.

    Args:
        scenes: Storyboard scenes in any order
        generate: Produces one scene's video (e.g. ``VideoGenerator``)
        persist: Saves one scene's result; awaited before the next scene starts

    Raises:
        SceneGenerationError: A scene failed; earlier scenes are already persisted
        ValueError: ``scenes`` is empty
    """
    ordered = sorted(scenes, key=lambda s: s.scene_number)
    if not ordered:
        raise ValueError("storyboard has no scenes")

    run = SceneRunResult(scene_count=len(ordered))
    for scene in ordered:
        if scene.is_done:
            run.skipped_ids.append(scene.scene_id)
            run.existing_urls.append(scene.existing_output_url.strip())
            continue

        logger.info("scene.started", scene_id=scene.scene_id, scene_number=scene.scene_number)
        try:
            result = await generate(scene)
            await persist(result)
        except Exception as e:
            logger.error(
                "scene.failed",
                scene_id=scene.scene_id,
                scene_number=scene.scene_number,
                succeeded=len(run.generated),
                error=e,
            )
            raise SceneGenerationError(scene.scene_number, len(run.generated), e) from e

        run.generated.append(result)
        logger.info(
            "scene.persisted",
            scene_id=scene.scene_id,
            scene_number=scene.scene_number,
            video_url=result.video_url,
        )

    return run
