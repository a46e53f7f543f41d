"""
KBase Document Models — Pydantic definitions returned by the store.

Document: The current state of a knowledge-base document plus its ledger.
Version: One retained ledger entry (full snapshot + diff vs. predecessor).
Activity: One append-only audit record.

Persistence lives in kbase.db.models; ``from_record`` converts rows.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from kbase.db.models import ActivityRecord, DocumentRecord


class ActivityAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    VERSION_CREATED = "version_created"


ACTION_TEXT = {
    ActivityAction.CREATED: "created the document",
    ActivityAction.UPDATED: "updated the document",
    ActivityAction.DELETED: "deleted the document",
    ActivityAction.VERSION_CREATED: "created a new version of the document",
}


# ---------------------------------------------------------------------------
# Snapshots, change flags and diffs
# ---------------------------------------------------------------------------

class DocumentSnapshot(BaseModel):
    """The user-visible fields of a document at one point in time."""

    title: str
    content: str
    summary: str = ""
    tags: List[str] = Field(default_factory=list)


class FieldChanges(BaseModel):
    """Per-field changed flags."""

    title: bool = False
    content: bool = False
    summary: bool = False
    tags: bool = False

    @classmethod
    def all_changed(cls) -> "FieldChanges":
        return cls(title=True, content=True, summary=True, tags=True)

    def any(self) -> bool:
        return self.title or self.content or self.summary or self.tags

    def changed_fields(self) -> List[str]:
        return [name for name, flag in self.model_dump().items() if flag]


class WordChange(BaseModel):
    text: str
    kind: Literal["unchanged", "added", "removed"]


class TagDiff(BaseModel):
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class ScalarDiff(BaseModel):
    before: str
    after: str


class VersionDiff(BaseModel):
    """Diff relative to the preceding version. Empty for unchanged fields."""

    title: List[WordChange] = Field(default_factory=list)
    content: List[WordChange] = Field(default_factory=list)
    tags: Optional[TagDiff] = None
    summary: Optional[ScalarDiff] = None

    def is_empty(self) -> bool:
        return not (self.title or self.content or self.tags or self.summary)


# ---------------------------------------------------------------------------
# Version (ledger entry)
# ---------------------------------------------------------------------------

class Version(BaseModel):
    """
    One ledger entry. The snapshot fields are stored flat; ``diff`` is
    relative to the immediately preceding version.
    """

    version_number: int = Field(ge=1)
    title: str
    content: str
    summary: str = ""
    tags: List[str] = Field(default_factory=list)
    diff: VersionDiff = Field(default_factory=VersionDiff)
    changes: FieldChanges = Field(default_factory=FieldChanges)
    edited_by: int
    note: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime

    @property
    def snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            title=self.title,
            content=self.content,
            summary=self.summary,
            tags=list(self.tags),
        )


class VersionPage(BaseModel):
    versions: List[Version]
    total: int
    has_more: bool


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class DocumentPatch(BaseModel):
    """Partial update. ``None`` means "leave as is"."""

    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None


class Document(BaseModel):
    """Current state of a document, including its retained ledger."""

    id: int
    title: str
    content: str
    summary: str = ""
    tags: List[str] = Field(default_factory=list)
    embedding: List[float] = Field(default_factory=list)
    created_by: int
    last_updated_by: Optional[int] = None
    current_version: int = Field(ge=1)
    is_deleted: bool = False
    versions: List[Version] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            title=self.title,
            content=self.content,
            summary=self.summary,
            tags=list(self.tags),
        )

    @classmethod
    def from_record(cls, row: DocumentRecord, include_versions: bool = True) -> "Document":
        return cls(
            id=row.id,
            title=row.title,
            content=row.content,
            summary=row.summary or "",
            tags=list(row.tags or []),
            embedding=list(row.embedding or []),
            created_by=row.created_by,
            last_updated_by=row.updated_by,
            current_version=row.current_version,
            is_deleted=bool(row.is_deleted),
            versions=[Version.model_validate(v) for v in row.versions or []] if include_versions else [],
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class DocumentPage(BaseModel):
    documents: List[Document]
    total: int
    has_more: bool


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------

class Activity(BaseModel):
    """Immutable audit record of one committed mutation."""

    id: Optional[int] = None
    action: ActivityAction
    document_id: int
    document_title: str
    version_number: Optional[int] = None
    user_id: int
    changes: FieldChanges = Field(default_factory=FieldChanges)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @property
    def action_text(self) -> str:
        return ACTION_TEXT.get(self.action, "performed an action on the document")

    @classmethod
    def from_record(cls, row: ActivityRecord) -> "Activity":
        return cls(
            id=row.id,
            action=ActivityAction(row.action),
            document_id=row.document_id,
            document_title=row.document_title,
            version_number=row.version_number,
            user_id=row.user_id,
            changes=FieldChanges.model_validate(row.changes or {}),
            metadata=dict(row.details or {}),
            created_at=row.created_at,
        )

    def to_feed_item(self) -> Dict[str, Any]:
        item = self.model_dump(mode="json")
        item["action_text"] = self.action_text
        return item


class ActivityPage(BaseModel):
    activities: List[Activity]
    total: int
    has_more: bool
