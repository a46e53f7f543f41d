"""
Diff engine for computing per-field changes between two document snapshots.

Text fields are compared at word granularity so small edits produce compact,
reviewable diffs; tags are compared as sets; the summary as a before/after
pair. Only fields whose changed-flag is true are diffed.
"""

from __future__ import annotations

import difflib
import re
from typing import Iterable, List, Optional

from kbase.documents.models import (
    DocumentSnapshot,
    FieldChanges,
    ScalarDiff,
    TagDiff,
    VersionDiff,
    WordChange,
)

# Words and the whitespace between them; joining tokens gives back the text.
_TOKEN_RE = re.compile(r"\s+|\S+")

_OPCODE_KINDS = {
    "equal": ("unchanged",),
    "delete": ("removed",),
    "insert": ("added",),
    "replace": ("removed", "added"),
}


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(text or "")


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Strip, lower-case and de-duplicate, keeping first-seen order."""
    seen = set()
    result = []
    for tag in tags or []:
        t = str(tag).strip().lower()
        if t and t not in seen:
            seen.add(t)
            result.append(t)
    return result


def merge_tags(primary: Iterable[str], extra: Iterable[str], cap: int = 10) -> List[str]:
    """Primary tags first, then extra ones, normalized and capped."""
    return normalize_tags([*primary, *extra])[:cap]


def tags_equal(a: Iterable[str], b: Iterable[str]) -> bool:
    return set(normalize_tags(a)) == set(normalize_tags(b))


def diff_text(old: str, new: str) -> List[WordChange]:
    """
    Word-level diff of two strings.

    Returns the ordered chunks needed to go from ``old`` to ``new``; adjacent
    chunks of the same kind are merged. Concatenating the ``unchanged`` and
    ``added`` chunks yields ``new``.
    """
    old_tokens = tokenize(old)
    new_tokens = tokenize(new)
    matcher = difflib.SequenceMatcher(None, old_tokens, new_tokens, autojunk=False)

    changes: List[WordChange] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        for kind in _OPCODE_KINDS[tag]:
            source = new_tokens[j1:j2] if kind == "added" else old_tokens[i1:i2]
            _append_chunk(changes, "".join(source), kind)
    return changes


def _append_chunk(changes: List[WordChange], text: str, kind: str) -> None:
    if not text:
        return
    if changes and changes[-1].kind == kind:
        changes[-1] = WordChange(text=changes[-1].text + text, kind=kind)
    else:
        changes.append(WordChange(text=text, kind=kind))


def diff_set(old: Iterable[str], new: Iterable[str]) -> TagDiff:
    old_set = set(normalize_tags(old))
    new_set = set(normalize_tags(new))
    return TagDiff(added=sorted(new_set - old_set), removed=sorted(old_set - new_set))


def diff_scalar(old: str, new: str) -> ScalarDiff:
    return ScalarDiff(before=old or "", after=new or "")


def compare(before: DocumentSnapshot, after: DocumentSnapshot) -> FieldChanges:
    """Which user-visible fields differ between two snapshots."""
    return FieldChanges(
        title=before.title != after.title,
        content=before.content != after.content,
        summary=before.summary != after.summary,
        tags=not tags_equal(before.tags, after.tags),
    )


def diff_snapshots(
    before: DocumentSnapshot,
    after: DocumentSnapshot,
    changes: Optional[FieldChanges] = None,
) -> VersionDiff:
    """Diff only the fields flagged in ``changes`` (computed if omitted)."""
    if changes is None:
        changes = compare(before, after)

    diff = VersionDiff()
    if changes.title:
        diff.title = diff_text(before.title, after.title)
    if changes.content:
        diff.content = diff_text(before.content, after.content)
    if changes.tags:
        diff.tags = diff_set(before.tags, after.tags)
    if changes.summary:
        diff.summary = diff_scalar(before.summary, after.summary)
    return diff
