"""Ordered-fallback field resolution for loosely-shaped provider payloads.

Providers rename fields between API versions and nest the same value in
different places (``taskId`` vs ``data.taskId`` vs ``result.taskId``).
Instead of ad-hoc ``a or b or c`` chains at each call site, every field is
described once by a :class:`FieldResolver` with an explicit priority list
of dotted paths. Adding a provider's new field name is a one-line change
to that list.

Example::

    TASK_ID = FieldResolver("task_id", ("taskId", "id", "data.taskId", "data.id"))
    TASK_ID.resolve_str({"data": {"taskId": "t-1"}})   # "t-1"

A path segment that lands on a JSON-encoded string (``data.resultJson``) is
decoded before descending further.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

_MISSING = object()


def first_string(*values: Any) -> str | None:
    """Return the first value that is a non-blank string, stripped."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def first_number(*values: Any) -> float | None:
    """Return the first finite number (numeric strings accepted)."""
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and math.isfinite(value):
            return value
        if isinstance(value, str) and value.strip():
            try:
                number = float(value)
            except ValueError:
                continue
            if math.isfinite(number):
                return number
    return None


def unique_strings(values: Iterable[Any]) -> list[str]:
    """Non-blank strings in first-seen order, stripped and deduplicated."""
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        text = first_string(value)
        if text and text not in seen:
            seen.add(text)
            out.append(text)
    return out


def _descend(value: Any, key: str) -> Any:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return _MISSING
    if isinstance(value, Mapping):
        return value.get(key, _MISSING)
    return _MISSING


def lookup(payload: Any, path: str) -> Any:
    """Resolve a dotted ``path`` in ``payload``; ``None`` when absent."""
    value = payload
    for key in path.split("."):
        value = _descend(value, key)
        if value is _MISSING:
            return None
    return value


@dataclass(frozen=True)
class FieldResolver:
    """One logical field and the paths it may live at, highest priority first."""

    name: str
    paths: Sequence[str]

    def candidates(self, payload: Any) -> list[Any]:
        return [lookup(payload, path) for path in self.paths]

    def resolve_str(self, payload: Any) -> str | None:
        return first_string(*self.candidates(payload))

    def resolve_number(self, payload: Any) -> float | None:
        return first_number(*self.candidates(payload))

    def resolve_all_str(self, payload: Any) -> list[str]:
        """Every string found at any path; list values are flattened."""
        flat: list[Any] = []
        for value in self.candidates(payload):
            if isinstance(value, (list, tuple)):
                flat.extend(value)
            else:
                flat.append(value)
        return unique_strings(flat)
