"""
KBase Persistence Models — SQLAlchemy tables.

Tables:
1. documents   — One row per document; the bounded version ledger is embedded
                 as a JSON array. ``revision`` is the ORM version counter used
                 for optimistic concurrency.
2. activities  — Append-only audit trail. References documents and users by
                 id only (no foreign keys), so deleting a document never
                 touches its activity.
"""

from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from kbase.db.base import AuditMixin, Base, SoftDeleteMixin, utcnow


ACTIVITY_ACTIONS = ("created", "updated", "deleted", "version_created")


# ---------------------------------------------------------------------------
# 1. Documents
# ---------------------------------------------------------------------------

class DocumentRecord(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    summary = Column(Text, default="", nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    embedding = Column(JSON, default=list, nullable=False)
    current_version = Column(Integer, default=1, nullable=False)
    versions = Column(JSON, default=list, nullable=False)
    revision = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}

    __table_args__ = (
        CheckConstraint("current_version >= 1", name="ck_documents_current_version"),
        Index("idx_documents_owner_updated", "created_by", "updated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentRecord(id={self.id}, title='{self.title}', "
            f"version={self.current_version}, deleted={self.is_deleted})>"
        )


# ---------------------------------------------------------------------------
# 2. Activities
# ---------------------------------------------------------------------------

class ActivityRecord(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(30), nullable=False, index=True)
    document_id = Column(Integer, nullable=False, index=True)
    document_title = Column(String(255), nullable=False)
    version_number = Column(Integer, nullable=True)
    user_id = Column(Integer, nullable=False, index=True)
    changes = Column(JSON, default=dict, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(
            "action IN ('created', 'updated', 'deleted', 'version_created')",
            name="ck_activities_action",
        ),
        Index("idx_activities_document_created", "document_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityRecord(id={self.id}, action='{self.action}', "
            f"document_id={self.document_id}, version={self.version_number})>"
        )
