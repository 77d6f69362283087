"""Text helpers shared by content building and logging."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def normalize(text: str) -> str:
    """NFC-normalize, drop control characters and collapse whitespace."""
    cleaned = _CONTROL.sub("", unicodedata.normalize("NFC", text))
    return _WHITESPACE.sub(" ", cleaned).strip()


def preview(text: str, limit: int = 100) -> str:
    """Short excerpt for log lines."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
