"""
Deterministic fallbacks used when an AI collaborator is unavailable or fails.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import List

SUMMARY_LIMIT = 220
SUMMARY_TRUNCATE_AT = 200
EMBEDDING_DIMENSIONS = 64

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")


def fallback_summary(text: str) -> str:
    """The text itself when short, otherwise its first 200 characters plus an ellipsis."""
    text = text or ""
    if len(text) > SUMMARY_LIMIT:
        return text[:SUMMARY_TRUNCATE_AT] + "…"
    return text


def fallback_tags(text: str, count: int = 5) -> List[str]:
    """Most frequent words; ties keep first-seen order."""
    words = _NON_WORD_RE.sub(" ", (text or "").lower()).split()
    return [word for word, _ in Counter(words).most_common(count)]


def fallback_embedding(text: str, dimensions: int = EMBEDDING_DIMENSIONS) -> List[float]:
    """Hash-style vector: character codes folded into ``dimensions`` buckets mod 1000."""
    vec = [0] * dimensions
    for i, ch in enumerate(text or ""):
        slot = i % dimensions
        vec[slot] = (vec[slot] + ord(ch)) % 1000
    return [v / 1000 for v in vec]
