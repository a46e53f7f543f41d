"""
KBase Activity Recorder — Append-only audit trail of committed mutations.

The recorder writes inside the caller's session, under a SAVEPOINT, so the
activity row normally commits with the document. If the insert fails the
SAVEPOINT is rolled back, the failure is logged and the document mutation
proceeds: losing an audit row is tolerable, losing document consistency is
not. Entries that could not be inserted are spooled to JSONL after the
document commits and can be re-inserted later with ``replay_pending()``.

Activity rows are never updated or deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from kbase.db.models import ActivityRecord, DocumentRecord
from kbase.db.session import session_scope
from kbase.documents.models import Activity, ActivityAction, ActivityPage, FieldChanges
from kbase.engine.logging import FileLogger, LogEntry, log, log_system_event, read_jsonl

logger = logging.getLogger("kbase.documents.activity")

UNRECORDED_KEY = "kbase.unrecorded_activity"


class ActivityRecorder:
    """
    Best-effort audit writer plus the feed / history queries.

    Args:
        session_factory: sessionmaker for reads and replay.
        spool_dir: Log directory whose ``activity/pending`` folder receives
                   entries that failed to insert. None disables spooling.
    """

    def __init__(self, session_factory: sessionmaker, spool_dir: Optional[str] = None):
        self._factory = session_factory
        self._spool = FileLogger(spool_dir) if spool_dir else None

    # -------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------

    def record(
        self,
        session: Session,
        action: ActivityAction,
        document: DocumentRecord,
        user_id: int,
        changes: FieldChanges,
        metadata: Optional[Dict[str, Any]] = None,
        version_number: Optional[int] = None,
    ) -> Optional[ActivityRecord]:
        """
        Append one activity row in the caller's transaction.

        The caller's pending changes are flushed first and their errors
        propagate. Only the activity insert itself is best effort: returns the
        row, or None when the insert failed and was queued for spooling.
        """
        data = {
            "action": ActivityAction(action).value,
            "document_id": document.id,
            "document_title": document.title,
            "version_number": version_number if version_number is not None else document.current_version,
            "user_id": user_id,
            "changes": changes.model_dump(),
            "details": metadata or {},
            "created_at": datetime.now(timezone.utc),
        }
        session.flush()
        try:
            with session.begin_nested():
                return self._insert(session, data)
        except Exception as e:
            logger.error(
                f"Activity '{data['action']}' for document {document.id} not recorded: {e}"
            )
            session.info.setdefault(UNRECORDED_KEY, []).append(data)
            return None

    def _insert(self, session: Session, data: Dict[str, Any]) -> ActivityRecord:
        row = ActivityRecord(**data)
        session.add(row)
        session.flush()
        return row

    def spool_unrecorded(self, session: Session) -> int:
        """
        Called after the document commit: write entries that failed to insert
        to the pending spool. Returns the number of entries spooled.
        """
        pending: List[Dict[str, Any]] = session.info.pop(UNRECORDED_KEY, [])
        if not pending:
            return 0
        if self._spool is None:
            for data in pending:
                logger.error(f"Activity lost (no spool configured): {data}")
            return 0

        for data in pending:
            self._spool.write(LogEntry("activity", "pending", data))
        logger.warning(f"Spooled {len(pending)} activity entr{'y' if len(pending) == 1 else 'ies'} for replay")
        return len(pending)

    def discard_unrecorded(self, session: Session) -> None:
        """The enclosing mutation rolled back; its activity must not be replayed."""
        session.info.pop(UNRECORDED_KEY, None)

    def replay_pending(self) -> int:
        """
        Re-insert spooled entries with their original timestamps.

        Each spool file is inserted in one transaction and removed afterwards.
        Returns the number of activities restored.
        """
        if self._spool is None:
            return 0

        restored = 0
        for path in self._spool.files("activity", "pending"):
            with self._spool.lock_for(path):
                entries = read_jsonl(path)
                with session_scope(self._factory) as session:
                    for data in entries:
                        session.add(ActivityRecord(**_from_spool(data)))
                path.unlink()
            restored += len(entries)
            logger.info(f"Replayed {len(entries)} activities from {path.name}")

        if restored:
            log(log_system_event("activity_replayed", details={"count": restored}))
        return restored

    def pending_count(self) -> int:
        if self._spool is None:
            return 0
        return sum(len(read_jsonl(p)) for p in self._spool.files("activity", "pending"))

    # -------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------

    def feed(self, offset: int = 0, limit: int = 10, document_id: Optional[int] = None) -> ActivityPage:
        """Activities newest first, paged, with a has_more indicator."""
        offset = max(offset, 0)
        with self._factory() as session:
            query = session.query(ActivityRecord)
            if document_id is not None:
                query = query.filter(ActivityRecord.document_id == document_id)
            total = query.count()
            rows = (
                query.order_by(ActivityRecord.created_at.desc(), ActivityRecord.id.desc())
                .offset(offset)
                .limit(max(limit, 0))
                .all()
            )
            activities = [Activity.from_record(r) for r in rows]

        return ActivityPage(
            activities=activities,
            total=total,
            has_more=offset + len(activities) < total,
        )

    def history(self, document_id: int) -> List[Activity]:
        """Full trail for one document, oldest first. Ignores soft delete and ledger eviction."""
        with self._factory() as session:
            rows = (
                session.query(ActivityRecord)
                .filter(ActivityRecord.document_id == document_id)
                .order_by(ActivityRecord.created_at.asc(), ActivityRecord.id.asc())
                .all()
            )
            return [Activity.from_record(r) for r in rows]


def _from_spool(data: Dict[str, Any]) -> Dict[str, Any]:
    restored = dict(data)
    created_at = restored.get("created_at")
    if isinstance(created_at, str):
        restored["created_at"] = datetime.fromisoformat(created_at)
    return restored
