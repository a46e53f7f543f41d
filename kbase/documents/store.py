"""
KBase Document Store — Transactional create / update / delete pipeline.

Mutation flow:
    1. Read the document and run the caller checks (not found, ownership, validation)
    2. Derive AI fields concurrently (each degrades to its fallback independently)
    3. Detect changed fields and compute the diff against the final state
    4. Inside one atomic scope: re-check the revision, apply fields, append to
       the version ledger, record activity (best effort), commit

All AI awaits happen before the atomic scope is opened; the scope itself is
synchronous, so a cancelled caller either never writes or writes everything.

Concurrency is optimistic. The ``revision`` read at request start must still
be current inside the atomic scope, and the ORM version counter rejects a
commit that races the check. Both surface as KBConflictError.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional, Tuple, Union

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from kbase.ai.assistant import AIAssistant
from kbase.db.base import utcnow
from kbase.db.models import DocumentRecord
from kbase.documents.activity import ActivityRecorder
from kbase.documents.diff import compare, diff_snapshots, merge_tags, normalize_tags
from kbase.documents.ledger import DEFAULT_CAPACITY, VersionLedger
from kbase.documents.models import (
    Activity,
    ActivityAction,
    ActivityPage,
    Document,
    DocumentPage,
    DocumentPatch,
    DocumentSnapshot,
    FieldChanges,
    Version,
    VersionDiff,
    VersionPage,
)
from kbase.engine.context import ExecutionContext
from kbase.engine.errors import (
    KBConflictError,
    KBError,
    KBForbiddenError,
    KBNotFoundError,
    KBTransactionError,
    KBValidationError,
    collect_validation_errors,
)
from kbase.engine.logging import (
    log,
    log_document_mutation,
    log_security_event,
    log_version_evicted,
)

logger = logging.getLogger("kbase.documents.store")

DEFAULT_MAX_TAGS = 10


class DocumentStore:
    """
    Versioned document store.

    Args:
        session_factory: sessionmaker from ``init_db``.
        assistant: AI collaborator (injected; lifecycle owned by the runtime).
        activity: Activity recorder. Built from ``session_factory`` if omitted.
        max_versions: Ledger capacity per document.
        max_tags: Tag cap applied after normalization.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        assistant: AIAssistant,
        activity: Optional[ActivityRecorder] = None,
        max_versions: int = DEFAULT_CAPACITY,
        max_tags: int = DEFAULT_MAX_TAGS,
    ):
        self._factory = session_factory
        self._assistant = assistant
        self._activity = activity or ActivityRecorder(session_factory)
        self._max_versions = max_versions
        self._max_tags = max_tags

    @property
    def activity(self) -> ActivityRecorder:
        return self._activity

    @property
    def assistant(self) -> AIAssistant:
        return self._assistant

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    async def create(
        self,
        ctx: ExecutionContext,
        title: str,
        content: str,
        tags: Optional[List[str]] = None,
    ) -> Document:
        """
        Create a document at version 1.

        Raises:
            KBValidationError: title or content missing or blank.
        """
        start = time.monotonic()
        errors = collect_validation_errors(title=title, content=content)
        if errors:
            raise KBValidationError(
                "Title and content are required",
                validation_errors=errors,
                operation="create_document",
                execution_id=ctx.execution_id,
            )

        title = title.strip()
        derived = await self._assistant.derive(title, content)
        snapshot = DocumentSnapshot(
            title=title,
            content=content,
            summary=derived.summary.value,
            tags=merge_tags(normalize_tags(tags), derived.tags.value, self._max_tags),
        )
        changes = FieldChanges.all_changed()
        ledger = VersionLedger(capacity=self._max_versions)
        ledger.append(snapshot, VersionDiff(), changes, ctx.user_id, note="Initial version")

        with self._atomic("create_document", ctx) as session:
            row = DocumentRecord(
                title=snapshot.title,
                content=snapshot.content,
                summary=snapshot.summary,
                tags=list(snapshot.tags),
                embedding=list(derived.embedding.value),
                current_version=ledger.last_number,
                versions=ledger.to_list(),
                created_by=ctx.user_id,
                updated_by=ctx.user_id,
            )
            session.add(row)
            session.flush()
            self._activity.record(
                session,
                ActivityAction.CREATED,
                row,
                ctx.user_id,
                changes,
                metadata={"new_version": snapshot.model_dump()},
            )

        document = Document.from_record(row)
        if derived.degraded:
            logger.info(f"Document {document.id} created with fallback {', '.join(derived.degraded)}")
        self._log_mutation("create", ctx, document.id, 1, changes, start)
        return document

    async def update(
        self,
        ctx: ExecutionContext,
        doc_id: int,
        patch: Union[DocumentPatch, Dict[str, Any]],
        expected_version: Optional[int] = None,
    ) -> Document:
        """
        Apply a partial update. A patch that changes nothing is a no-op:
        no version, no activity, no write.

        Raises:
            KBNotFoundError: unknown or deleted document.
            KBForbiddenError: caller is neither owner nor admin.
            KBValidationError: patch blanks title or content.
            KBConflictError: ``expected_version`` is stale, or a concurrent
                             mutation committed first.
        """
        start = time.monotonic()
        if not isinstance(patch, DocumentPatch):
            patch = DocumentPatch.model_validate(patch)

        current, revision = self._read_for_mutation(ctx, doc_id, "update")

        provided = {
            name: getattr(patch, name)
            for name in ("title", "content")
            if getattr(patch, name) is not None
        }
        errors = collect_validation_errors(**provided)
        if errors:
            raise KBValidationError(
                "Title and content must not be empty",
                validation_errors=errors,
                document_id=doc_id,
                operation="update_document",
                execution_id=ctx.execution_id,
            )

        if expected_version is not None and expected_version != current.current_version:
            raise KBConflictError(
                f"Document {doc_id} is at version {current.current_version}, "
                f"expected {expected_version}",
                document_id=doc_id,
                expected_version=expected_version,
                actual_version=current.current_version,
                operation="update_document",
            )

        before = current.snapshot
        title = patch.title.strip() if patch.title is not None else before.title
        content = patch.content if patch.content is not None else before.content
        if patch.tags is not None:
            tags = normalize_tags(patch.tags)[: self._max_tags]
        else:
            tags = list(before.tags)

        summary = before.summary
        embedding: Optional[List[float]] = None
        if title != before.title or content != before.content:
            derived = await self._assistant.derive(title, content)
            summary = derived.summary.value
            embedding = list(derived.embedding.value)
            if patch.tags is None:
                tags = merge_tags(tags, derived.tags.value, self._max_tags)

        after = DocumentSnapshot(title=title, content=content, summary=summary, tags=tags)
        changes = compare(before, after)
        if not changes.any():
            logger.debug(f"Update of document {doc_id} changed nothing; skipping version")
            return current

        diff = diff_snapshots(before, after, changes)

        with self._atomic("update_document", ctx, doc_id) as session:
            row = self._fetch_current(session, doc_id, revision)
            ledger = self._ledger(row)
            version = ledger.append(after, diff, changes, ctx.user_id)
            self._apply(row, after, ctx.user_id)
            if embedding is not None:
                row.embedding = embedding
            row.current_version = version.version_number
            row.versions = ledger.to_list()
            self._activity.record(
                session,
                ActivityAction.UPDATED,
                row,
                ctx.user_id,
                changes,
                metadata={
                    "previous_version": before.model_dump(),
                    "new_version": after.model_dump(),
                },
            )

        self._log_evictions(doc_id, ledger)
        self._log_mutation("update", ctx, doc_id, version.version_number, changes, start)
        return Document.from_record(row)

    async def delete(self, ctx: ExecutionContext, doc_id: int) -> None:
        """Soft delete. The ledger is untouched and the activity trail remains."""
        start = time.monotonic()
        current, revision = self._read_for_mutation(ctx, doc_id, "delete")

        with self._atomic("delete_document", ctx, doc_id) as session:
            row = self._fetch_current(session, doc_id, revision)
            row.is_deleted = True
            row.deleted_at = utcnow()
            row.deleted_by = ctx.user_id
            row.updated_by = ctx.user_id
            self._activity.record(
                session,
                ActivityAction.DELETED,
                row,
                ctx.user_id,
                FieldChanges(),
                metadata={"previous_version": current.snapshot.model_dump()},
            )

        self._log_mutation("delete", ctx, doc_id, current.current_version, None, start)

    async def force_summarize(self, ctx: ExecutionContext, doc_id: int) -> str:
        """Recompute the summary. Not versioned: no user-authored field changes."""
        current, revision = self._read_for_mutation(ctx, doc_id, "summarize")
        result = await self._assistant.summarize(current.content)

        with self._atomic("summarize_document", ctx, doc_id) as session:
            row = self._fetch_current(session, doc_id, revision)
            row.summary = result.value
        return result.value

    async def force_tags(self, ctx: ExecutionContext, doc_id: int) -> List[str]:
        """Merge freshly generated tags into the existing ones. Not versioned."""
        current, revision = self._read_for_mutation(ctx, doc_id, "tag")
        result = await self._assistant.tag(f"{current.title}\n{current.content}")
        tags = merge_tags(current.tags, result.value, self._max_tags)

        with self._atomic("tag_document", ctx, doc_id) as session:
            row = self._fetch_current(session, doc_id, revision)
            row.tags = tags
        return tags

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get(self, doc_id: int, include_deleted: bool = False) -> Document:
        with self._factory() as session:
            row = session.get(DocumentRecord, doc_id)
            if row is None or (row.is_deleted and not include_deleted):
                raise KBNotFoundError(
                    f"Document {doc_id} not found",
                    record_type="document",
                    record_id=doc_id,
                    document_id=doc_id,
                )
            return Document.from_record(row)

    def list_documents(
        self,
        offset: int = 0,
        limit: int = 20,
        owner_id: Optional[int] = None,
        tags: Optional[List[str]] = None,
        include_deleted: bool = False,
    ) -> DocumentPage:
        """
        Documents by most recent update. ``tags`` keeps documents carrying
        all of the given tags (normalized).
        """
        offset = max(offset, 0)
        wanted = set(normalize_tags(tags))
        with self._factory() as session:
            query = session.query(DocumentRecord)
            if not include_deleted:
                query = query.filter(DocumentRecord.is_deleted.is_(False))
            if owner_id is not None:
                query = query.filter(DocumentRecord.created_by == owner_id)
            rows = query.order_by(DocumentRecord.updated_at.desc(), DocumentRecord.id.desc()).all()

            # Tags live in a JSON column; portable containment is done here
            if wanted:
                rows = [r for r in rows if wanted.issubset(r.tags or [])]

            total = len(rows)
            page = rows[offset: offset + max(limit, 0)]
            documents = [Document.from_record(r, include_versions=False) for r in page]

        return DocumentPage(
            documents=documents,
            total=total,
            has_more=offset + len(documents) < total,
        )

    def get_versions(self, doc_id: int, offset: int = 0, limit: int = 10) -> VersionPage:
        return self._ledger_of(self.get(doc_id)).list(offset, limit)

    def get_version(self, doc_id: int, version_number: int) -> Version:
        return self._ledger_of(self.get(doc_id)).find(version_number)

    def activity_feed(
        self,
        offset: int = 0,
        limit: int = 10,
        document_id: Optional[int] = None,
    ) -> ActivityPage:
        return self._activity.feed(offset, limit, document_id=document_id)

    def document_history(self, doc_id: int) -> List[Activity]:
        """Audit query: every activity for the id, deleted or not."""
        return self._activity.history(doc_id)

    # -------------------------------------------------------------------
    # Internals shared with RestoreWorkflow
    # -------------------------------------------------------------------

    def _read_for_mutation(
        self,
        ctx: ExecutionContext,
        doc_id: int,
        operation: str,
    ) -> Tuple[Document, int]:
        """Load a live document, enforce ownership, return it with its revision."""
        with self._factory() as session:
            row = session.get(DocumentRecord, doc_id)
            if row is None or row.is_deleted:
                raise KBNotFoundError(
                    f"Document {doc_id} not found",
                    record_type="document",
                    record_id=doc_id,
                    document_id=doc_id,
                    operation=f"{operation}_document",
                )
            document = Document.from_record(row)
            revision = row.revision

        if not ctx.can_modify(document.created_by):
            log(log_security_event(
                event="ownership_denied",
                document_id=doc_id,
                user_id=ctx.user_id,
                permission_needed=operation,
                execution_id=ctx.execution_id,
            ))
            raise KBForbiddenError(
                f"User {ctx.user_id} may not {operation} document {doc_id}",
                user_id=ctx.user_id,
                required_permission=operation,
                document_id=doc_id,
                execution_id=ctx.execution_id,
            )
        return document, revision

    def _fetch_current(self, session: Session, doc_id: int, revision: int) -> DocumentRecord:
        """Re-read inside the atomic scope; the revision must not have moved."""
        row = session.get(DocumentRecord, doc_id)
        if row is None or row.is_deleted:
            raise KBNotFoundError(
                f"Document {doc_id} not found",
                record_type="document",
                record_id=doc_id,
                document_id=doc_id,
            )
        if row.revision != revision:
            raise KBConflictError(
                f"Document {doc_id} was modified concurrently; retry",
                document_id=doc_id,
                actual_version=row.current_version,
            )
        return row

    def _ledger(self, row: DocumentRecord) -> VersionLedger:
        return VersionLedger.load(row.versions, row.current_version, self._max_versions)

    def _ledger_of(self, document: Document) -> VersionLedger:
        return VersionLedger(document.versions, self._max_versions, document.current_version)

    @staticmethod
    def _apply(row: DocumentRecord, snapshot: DocumentSnapshot, user_id: int) -> None:
        row.title = snapshot.title
        row.content = snapshot.content
        row.summary = snapshot.summary
        row.tags = list(snapshot.tags)
        row.updated_by = user_id

    @contextmanager
    def _atomic(
        self,
        operation: str,
        ctx: ExecutionContext,
        doc_id: Optional[int] = None,
    ) -> Generator[Session, None, None]:
        """
        One unit of work: commit on success, roll back everything otherwise.

        KBErrors propagate unchanged; a lost optimistic race becomes
        KBConflictError; anything else becomes KBTransactionError.
        Activity entries that failed to insert are spooled only after commit.
        """
        session = self._factory()
        try:
            yield session
            session.commit()
        except KBError:
            session.rollback()
            self._activity.discard_unrecorded(session)
            raise
        except StaleDataError as e:
            session.rollback()
            self._activity.discard_unrecorded(session)
            raise KBConflictError(
                f"Document {doc_id} was modified concurrently; retry",
                document_id=doc_id,
                operation=operation,
                execution_id=ctx.execution_id,
            ) from e
        except Exception as e:
            session.rollback()
            self._activity.discard_unrecorded(session)
            logger.error(f"Atomic scope '{operation}' failed for document {doc_id}: {e}")
            log(log_document_mutation(
                operation=operation,
                document_id=doc_id,
                user_id=ctx.user_id,
                execution_id=ctx.execution_id,
                success=False,
                error=str(e),
            ))
            raise KBTransactionError(
                f"{operation} failed: {e}",
                operation=operation,
                document_id=doc_id,
                execution_id=ctx.execution_id,
            ) from e
        else:
            self._activity.spool_unrecorded(session)
        finally:
            session.close()

    def _log_evictions(self, doc_id: int, ledger: VersionLedger) -> None:
        for version in ledger.evicted:
            log(log_version_evicted(doc_id, version.version_number))

    def _log_mutation(
        self,
        operation: str,
        ctx: ExecutionContext,
        doc_id: int,
        version_number: int,
        changes: Optional[FieldChanges],
        start: float,
    ) -> None:
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Document {doc_id} {operation}d by user {ctx.user_id} "
            f"(v{version_number}, {duration_ms:.1f}ms)"
        )
        log(log_document_mutation(
            operation=operation,
            document_id=doc_id,
            user_id=ctx.user_id,
            execution_id=ctx.execution_id,
            version_number=version_number,
            fields_changed=changes.changed_fields() if changes else None,
            duration_ms=duration_ms,
        ))
