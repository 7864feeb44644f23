"""Text helpers for normalization, fingerprints and token estimates."""

from __future__ import annotations

import hashlib

CHARS_PER_TOKEN = 4


def normalize_text(text: str) -> str:
    """Canonical form used for content fingerprints.

    Unifies line endings, drops NUL bytes and trailing whitespace per line.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    return "\n".join(line.rstrip() for line in text.split("\n")).strip()


def content_hash(text: str) -> str:
    """Deterministic sha256 fingerprint of normalized text."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    """Cheap token estimate; good enough for context budgeting."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)
