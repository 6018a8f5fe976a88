"""Tests for sequential scene generation."""

from __future__ import annotations

import pytest

from steadfast.core.errors import NetworkError, SceneGenerationError
from steadfast.generation import SceneResult, SceneTask, generate_scenes


class Storyboard:
    """Fake generator + persistence pair over an in-memory scene table."""

    def __init__(self, fail: set[int] | None = None):
        self.fail = fail or set()
        self.generated: list[int] = []
        self.persisted: dict[str, str] = {}

    async def generate(self, scene: SceneTask) -> SceneResult:
        self.generated.append(scene.scene_number)
        if scene.scene_number in self.fail:
            raise NetworkError(f"kie poll failed for scene {scene.scene_number}")
        return SceneResult(
            scene_id=scene.scene_id,
            scene_number=scene.scene_number,
            video_url=f"https://v/{scene.scene_number}.mp4",
            provider_task_id=f"task-{scene.scene_number}",
        )

    async def persist(self, result: SceneResult) -> None:
        self.persisted[result.scene_id] = result.video_url


def _scenes(*numbers: int, done: set[int] = frozenset()) -> list[SceneTask]:
    return [
        SceneTask(
            f"s{n}",
            n,
            f"prompt {n}",
            existing_output_url=f"https://v/old-{n}.mp4" if n in done else None,
        )
        for n in numbers
    ]


class TestGenerateScenes:
    @pytest.mark.asyncio
    async def test_generates_in_scene_order(self):
        board = Storyboard()
        run = await generate_scenes(_scenes(3, 1, 2), board.generate, board.persist)

        assert board.generated == [1, 2, 3]
        assert run.video_urls == ["https://v/1.mp4", "https://v/2.mp4", "https://v/3.mp4"]
        assert run.task_ids == ["task-1", "task-2", "task-3"]
        assert run.summary() == "3 scene(s) generated"

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_scenes(self):
        """Scene 2 of 3 fails: scene 1 is persisted, scene 3 never starts."""
        board = Storyboard(fail={2})

        with pytest.raises(SceneGenerationError) as exc_info:
            await generate_scenes(_scenes(1, 2, 3), board.generate, board.persist)

        err = exc_info.value
        assert err.scene_number == 2
        assert err.succeeded == 1
        assert str(err) == "Scene 2 failed after 1 successful scene(s): kie poll failed for scene 2"
        assert isinstance(err.__cause__, NetworkError)
        assert board.persisted == {"s1": "https://v/1.mp4"}
        assert board.generated == [1, 2]

    @pytest.mark.asyncio
    async def test_rerun_resumes_at_failed_scene(self):
        scenes = _scenes(1, 2, 3, done={1})
        board = Storyboard()

        run = await generate_scenes(scenes, board.generate, board.persist)

        assert board.generated == [2, 3]
        assert run.skipped_ids == ["s1"]
        assert run.video_urls[0] == "https://v/old-1.mp4"
        assert run.summary() == "2 scene(s) generated, 1 already done"

    @pytest.mark.asyncio
    async def test_everything_already_generated(self):
        board = Storyboard()
        run = await generate_scenes(_scenes(1, 2, done={1, 2}), board.generate, board.persist)
        assert board.generated == []
        assert run.already_generated
        assert run.summary() == "2/2 scenes already generated"

    @pytest.mark.asyncio
    async def test_persist_failure_is_a_scene_failure(self):
        board = Storyboard()

        async def broken_persist(result: SceneResult) -> None:
            raise OSError("database unavailable")

        with pytest.raises(SceneGenerationError) as exc_info:
            await generate_scenes(_scenes(1, 2), board.generate, broken_persist)
        assert exc_info.value.scene_number == 1
        assert exc_info.value.succeeded == 0

    @pytest.mark.asyncio
    async def test_empty_storyboard(self):
        board = Storyboard()
        with pytest.raises(ValueError):
            await generate_scenes([], board.generate, board.persist)
