"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha256_text(text: str) -> str:
    """Return hex digest for UTF-8 encoded text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
