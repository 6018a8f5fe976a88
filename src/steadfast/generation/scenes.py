"""Scene model for multi-part video generation.

A storyboard is a list of scenes ordered by a dense, 1-based
``scene_number``. Each scene carries the prompt, the reference frames that
condition the video (character before product) and a target duration that
is always one of a small set of allowed classes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from steadfast.core.fields import FieldResolver, first_number, first_string, unique_strings

DEFAULT_DURATION_CLASSES: tuple[int, ...] = (10, 15)


class ReferenceKind(str, Enum):
    CHARACTER = "character"
    PRODUCT = "product"


# Composition priority: lower sorts first.
_KIND_ORDER = {ReferenceKind.CHARACTER: 0, ReferenceKind.PRODUCT: 1}


@dataclass(frozen=True)
class ReferenceImage:
    kind: ReferenceKind
    role: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "role": self.role, "url": self.url}


def normalize_duration(
    raw: Any,
    allowed: Sequence[int] = DEFAULT_DURATION_CLASSES,
    default: int | None = None,
) -> int:
    """Snap a source duration onto the nearest allowed class.

    Values outside the range clamp to the nearest end; a value exactly
    between two classes rounds up. Anything non-numeric yields ``default``
    (or the smallest class).

    >>> normalize_duration(6)
    10
    >>> normalize_duration(12.5)
    15
    >>> normalize_duration(40)
    15
    """
    if not allowed:
        raise ValueError("allowed duration classes must not be empty")
    classes = sorted(allowed)
    value = first_number(raw)
    if value is None:
        return default if default is not None else classes[0]
    if value <= classes[0]:
        return classes[0]
    if value >= classes[-1]:
        return classes[-1]
    return min(classes, key=lambda c: (abs(c - value), -c))


def _parse_frame(entry: Any) -> ReferenceImage | None:
    if not isinstance(entry, Mapping):
        return None
    try:
        kind = ReferenceKind(entry.get("kind"))
    except ValueError:
        return None
    url = first_string(entry.get("url"))
    if url is None:
        return None
    role = first_string(entry.get("role")) or kind.value
    return ReferenceImage(kind=kind, role=role, url=url)


def build_reference_images(
    frames: Iterable[Any] | None = None,
    *,
    character_url: str | None = None,
    product_url: str | None = None,
) -> list[ReferenceImage]:
    """One frame per kind, character first.

    A frame already attached to the scene wins over the project-level
    ``character_url`` / ``product_url``. Blank URLs are dropped.
    """
    parsed = [f for f in (_parse_frame(e) for e in frames or ()) if f is not None]
    fallbacks = {
        ReferenceKind.CHARACTER: first_string(character_url),
        ReferenceKind.PRODUCT: first_string(product_url),
    }

    images: list[ReferenceImage] = []
    for kind in sorted(ReferenceKind, key=_KIND_ORDER.__getitem__):
        frame = next((f for f in parsed if f.kind is kind), None)
        if frame is None and fallbacks[kind]:
            frame = ReferenceImage(kind=kind, role=kind.value, url=fallbacks[kind])
        if frame is not None:
            images.append(frame)
    return images


SCENE_ID = FieldResolver("scene_id", ("id", "sceneId"))
SCENE_NUMBER = FieldResolver("scene_number", ("sceneNumber", "scene_number", "rawJson.sceneNumber"))
SCENE_PROMPT = FieldResolver("prompt", ("videoPrompt", "rawJson.videoPrompt", "prompt"))
SCENE_DURATION = FieldResolver(
    "duration",
    ("clipDurationSeconds", "durationSec", "rawJson.durationSec", "rawJson.duration"),
)
SCENE_OUTPUT_URL = FieldResolver("video_url", ("videoUrl", "rawJson.videoUrl", "rawJson.video_url"))
SCENE_FRAMES = FieldResolver("reference_frames", ("referenceFrames", "rawJson.referenceFrames"))
SCENE_CHARACTER_URL = FieldResolver("character_url", ("rawJson.characterAvatarImageUrl",))
SCENE_PRODUCT_URL = FieldResolver("product_url", ("rawJson.productReferenceImageUrl",))


@dataclass
class SceneTask:
    """One scene to generate.

    ``existing_output_url`` is the completion marker: a scene that already
    has a video is skipped on the next pass.
    """

    scene_id: str
    scene_number: int
    prompt: str
    reference_images: list[ReferenceImage] = field(default_factory=list)
    target_duration: int = DEFAULT_DURATION_CLASSES[0]
    existing_output_url: str | None = None

    @property
    def image_urls(self) -> list[str]:
        return unique_strings(image.url for image in self.reference_images)

    @property
    def has_reference_images(self) -> bool:
        return bool(self.image_urls)

    @property
    def is_done(self) -> bool:
        return bool(first_string(self.existing_output_url))

    @classmethod
    def from_record(
        cls,
        record: Mapping[str, Any],
        *,
        character_url: str | None = None,
        product_url: str | None = None,
        allowed_durations: Sequence[int] = DEFAULT_DURATION_CLASSES,
    ) -> SceneTask:
        """Build a task from a stored scene row (``rawJson`` may be a string)."""
        frames = next(
            (c for c in SCENE_FRAMES.candidates(record) if isinstance(c, list)),
            None,
        )
        number = SCENE_NUMBER.resolve_number(record)
        return cls(
            scene_id=SCENE_ID.resolve_str(record) or "",
            scene_number=int(number) if number is not None else 0,
            prompt=SCENE_PROMPT.resolve_str(record) or "",
            reference_images=build_reference_images(
                frames,
                character_url=SCENE_CHARACTER_URL.resolve_str(record) or character_url,
                product_url=SCENE_PRODUCT_URL.resolve_str(record) or product_url,
            ),
            target_duration=normalize_duration(
                SCENE_DURATION.resolve_number(record), allowed_durations
            ),
            existing_output_url=SCENE_OUTPUT_URL.resolve_str(record),
        )


@dataclass(frozen=True)
class SceneResult:
    """A generated scene video and how it was produced."""

    scene_id: str
    scene_number: int
    video_url: str
    provider_task_id: str
    provider_payload: dict[str, Any] = field(default_factory=dict)
