"""KBase persistence — declarative base, session management, tables."""

from kbase.db.base import Base  # noqa: F401
from kbase.db.models import ActivityRecord, DocumentRecord  # noqa: F401
from kbase.db.session import init_db, session_scope  # noqa: F401

__all__ = ["Base", "ActivityRecord", "DocumentRecord", "init_db", "session_scope"]
