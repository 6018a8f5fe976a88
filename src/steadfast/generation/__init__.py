from steadfast.generation.pipeline import SceneRunResult, generate_scenes
from steadfast.generation.scenes import (
    DEFAULT_DURATION_CLASSES,
    ReferenceImage,
    ReferenceKind,
    SceneResult,
    SceneTask,
    build_reference_images,
    normalize_duration,
)
from steadfast.generation.video import VideoGenerator, build_kie_video_generator, kie_video_chain

__all__ = [
    "SceneTask",
    "SceneResult",
    "ReferenceImage",
    "ReferenceKind",
    "DEFAULT_DURATION_CLASSES",
    "normalize_duration",
    "build_reference_images",
    "generate_scenes",
    "SceneRunResult",
    "VideoGenerator",
    "kie_video_chain",
    "build_kie_video_generator",
]
