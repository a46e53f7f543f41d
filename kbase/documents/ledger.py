"""
Version ledger — the bounded, per-document sequence of version snapshots.

The ledger is a fixed-capacity FIFO: appending to a full ledger silently
evicts the oldest entry. Full history survives only in the activity log.
Persisted as a JSON array on the document row (oldest first).
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, Iterator, List, Optional

from kbase.documents.models import (
    DocumentSnapshot,
    FieldChanges,
    Version,
    VersionDiff,
    VersionPage,
)
from kbase.engine.errors import KBNotFoundError

logger = logging.getLogger("kbase.documents.ledger")

DEFAULT_CAPACITY = 10


class VersionLedger:
    """
    Capacity-bounded ring of Version entries, oldest at the head.

    ``last_number`` is the highest version number ever assigned, which stays
    correct after eviction (it mirrors the document's ``current_version``).
    """

    def __init__(
        self,
        entries: Iterable[Version] = (),
        capacity: int = DEFAULT_CAPACITY,
        last_number: int = 0,
    ):
        if capacity < 1:
            raise ValueError("Ledger capacity must be at least 1")
        self._capacity = capacity
        ordered = sorted(entries, key=lambda v: v.version_number)
        self._entries: Deque[Version] = deque(ordered, maxlen=capacity)
        self._last_number = max(
            [last_number] + [v.version_number for v in ordered]
        )
        self.evicted: List[Version] = []

    @classmethod
    def load(
        cls,
        raw: Optional[List[Dict[str, Any]]],
        last_number: int = 0,
        capacity: int = DEFAULT_CAPACITY,
    ) -> "VersionLedger":
        """Build a ledger from the JSON array stored on a document row."""
        return cls(
            (Version.model_validate(item) for item in raw or []),
            capacity=capacity,
            last_number=last_number,
        )

    def to_list(self) -> List[Dict[str, Any]]:
        """JSON-ready list, oldest first. Always a new list object."""
        return [v.model_dump(mode="json") for v in self._entries]

    # -------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------

    def append(
        self,
        snapshot: DocumentSnapshot,
        diff: VersionDiff,
        changes: FieldChanges,
        editor_id: int,
        note: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Version:
        """Append the next sequential version, evicting the oldest if full."""
        version = Version(
            version_number=self._last_number + 1,
            title=snapshot.title,
            content=snapshot.content,
            summary=snapshot.summary,
            tags=list(snapshot.tags),
            diff=diff,
            changes=changes,
            edited_by=editor_id,
            note=note,
            created_at=created_at or datetime.now(timezone.utc),
        )

        if len(self._entries) == self._capacity:
            dropped = self._entries[0]
            self.evicted.append(dropped)
            logger.debug(f"Evicting version {dropped.version_number} (capacity={self._capacity})")

        self._entries.append(version)
        self._last_number = version.version_number
        return version

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------

    def find(self, version_number: int) -> Version:
        for version in self._entries:
            if version.version_number == version_number:
                return version
        raise KBNotFoundError(
            f"Version {version_number} not found",
            record_type="version",
            record_id=version_number,
        )

    def list(self, offset: int = 0, limit: int = 10) -> VersionPage:
        """Versions ordered by version number, newest first."""
        offset = max(offset, 0)
        newest_first = sorted(self._entries, key=lambda v: v.version_number, reverse=True)
        page = newest_first[offset: offset + max(limit, 0)]
        return VersionPage(
            versions=page,
            total=len(newest_first),
            has_more=offset + len(page) < len(newest_first),
        )

    @property
    def latest(self) -> Optional[Version]:
        return self._entries[-1] if self._entries else None

    @property
    def oldest(self) -> Optional[Version]:
        return self._entries[0] if self._entries else None

    @property
    def last_number(self) -> int:
        return self._last_number

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Version]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"<VersionLedger size={len(self)}/{self._capacity} last={self._last_number}>"
