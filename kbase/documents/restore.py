"""
KBase Restore Workflow — Forward-only revert to a retained version.

Restoring never rewinds the version counter. Two versions are appended:
    V+1  checkpoint of the current state (diffed against the newest ledger entry)
    V+2  the target snapshot (diffed against the checkpoint)

The embedding is recomputed for the restored text; summary and tags come
from the target snapshot as stored.
"""

from __future__ import annotations

import logging
import time

from kbase.documents.diff import compare, diff_snapshots
from kbase.documents.models import ActivityAction, Document
from kbase.documents.store import DocumentStore
from kbase.engine.context import ExecutionContext

logger = logging.getLogger("kbase.documents.restore")


class RestoreWorkflow:
    """Restore built on the store's read / atomic-scope primitives."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def restore(self, ctx: ExecutionContext, doc_id: int, version_number: int) -> Document:
        """
        Raises:
            KBNotFoundError: document or target version missing.
            KBForbiddenError: caller is neither owner nor admin.
            KBConflictError: a concurrent mutation committed first.
        """
        store = self._store
        start = time.monotonic()

        current, revision = store._read_for_mutation(ctx, doc_id, "restore")
        ledger = store._ledger_of(current)
        target = ledger.find(version_number)

        current_snapshot = current.snapshot
        target_snapshot = target.snapshot
        embedding = await store.assistant.embed(f"{target_snapshot.title}\n{target_snapshot.content}")

        with store._atomic("restore_version", ctx, doc_id) as session:
            row = store._fetch_current(session, doc_id, revision)
            ledger = store._ledger(row)

            newest = ledger.latest
            baseline = newest.snapshot if newest is not None else current_snapshot
            checkpoint_changes = compare(baseline, current_snapshot)
            ledger.append(
                current_snapshot,
                diff_snapshots(baseline, current_snapshot, checkpoint_changes),
                checkpoint_changes,
                ctx.user_id,
                note=f"Checkpoint before restoring version {version_number}",
            )

            restore_changes = compare(current_snapshot, target_snapshot)
            restored = ledger.append(
                target_snapshot,
                diff_snapshots(current_snapshot, target_snapshot, restore_changes),
                restore_changes,
                ctx.user_id,
                note=f"Restored from version {version_number}",
            )

            store._apply(row, target_snapshot, ctx.user_id)
            row.embedding = list(embedding.value)
            row.current_version = restored.version_number
            row.versions = ledger.to_list()
            store.activity.record(
                session,
                ActivityAction.VERSION_CREATED,
                row,
                ctx.user_id,
                restore_changes,
                metadata={
                    "previous_version": current_snapshot.model_dump(),
                    "new_version": target_snapshot.model_dump(),
                    "restored_from": version_number,
                },
            )

        store._log_evictions(doc_id, ledger)
        store._log_mutation("restore", ctx, doc_id, restored.version_number, restore_changes, start)
        logger.info(f"Document {doc_id} restored from v{version_number} to v{restored.version_number}")
        return Document.from_record(row)
