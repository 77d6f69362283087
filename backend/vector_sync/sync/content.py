"""Deterministic content normalization for embedding input."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import orjson

from vector_sync.models.entities import Record
from vector_sync.utils.text import normalize

CONTENT_VERSION = 1
SEPARATOR = " "


@dataclass(slots=True)
class NormalizedContent:
    text: str
    processed_fields: list[str]


def build_content(record: Record, fields: Sequence[str]) -> NormalizedContent:
    """Join the configured fields of ``record`` into one string.

    Fields are visited in order; dotted names reach into nested mappings.
    Missing or empty values are skipped, mappings and lists are rendered as
    compact JSON.
    """
    parts: list[str] = []
    processed: list[str] = []
    for name in fields:
        value = _lookup(record.fields, name)
        rendered = _render(value)
        if not rendered:
            continue
        parts.append(rendered)
        processed.append(name)
    return NormalizedContent(text=SEPARATOR.join(parts), processed_fields=processed)


def _lookup(fields: Mapping[str, Any], dotted: str) -> Any:
    current: Any = fields
    for key in dotted.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def _render(value: Any) -> str:
    if value is None or value is False:
        return ""
    if isinstance(value, (Mapping, list, tuple)):
        if not value:
            return ""
        return orjson.dumps(value, default=str, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    if isinstance(value, str):
        return normalize(value)
    return str(value)


__all__ = ["NormalizedContent", "build_content", "CONTENT_VERSION"]
