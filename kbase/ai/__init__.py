"""
KBase AI collaborators.

summarize(text) -> str, tag(text, k) -> [str], embed(text) -> [float];
each may be slow or fail and degrades to a deterministic fallback.
"""

from kbase.ai.assistant import (  # noqa: F401
    AIAssistant,
    AIResult,
    DerivedFields,
    GeminiAssistant,
    OfflineAssistant,
    build_assistant,
)

__all__ = [
    "AIAssistant",
    "AIResult",
    "DerivedFields",
    "GeminiAssistant",
    "OfflineAssistant",
    "build_assistant",
]
