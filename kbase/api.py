"""
KBase API — Transport-agnostic mutation and read surface.

Every call takes the caller's ExecutionContext (resolved by the
authentication collaborator) and returns an APIResponse. Errors are mapped
to ``{"kind", "message"}`` bodies and never leak raw internal failures:

    KBValidationError   → 400
    KBForbiddenError    → 403
    KBNotFoundError     → 404
    KBConflictError     → 409
    KBTransactionError  → 500 (generic message in prod)
    anything else       → 500 (generic message)

HTTP routing is left to the embedding application.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from kbase.documents.models import DocumentPatch
from kbase.documents.restore import RestoreWorkflow
from kbase.documents.store import DocumentStore
from kbase.engine.context import (
    ExecutionContext,
    clear_execution_context,
    set_execution_context,
)
from kbase.engine.errors import KBError

logger = logging.getLogger("kbase.api")

GENERIC_ERROR = {"kind": "internal_error", "message": "Internal server error"}


class APIResponse(BaseModel):
    """Normalized outbound response."""

    status_code: int = 200
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class KnowledgeBaseAPI:
    """
    Facade over DocumentStore and RestoreWorkflow.

    Args:
        store: The document store.
        restore: Restore workflow (built on ``store`` if omitted).
        expose_details: Include internal failure detail in 500 bodies.
                        Off in production.
        page_size: Default page size for feeds and version lists.
    """

    def __init__(
        self,
        store: DocumentStore,
        restore: Optional[RestoreWorkflow] = None,
        expose_details: bool = True,
        page_size: int = 10,
    ):
        self._store = store
        self._restore = restore or RestoreWorkflow(store)
        self._expose_details = expose_details
        self._page_size = page_size

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    async def create_document(
        self,
        ctx: ExecutionContext,
        title: str,
        content: str,
        tags: Optional[List[str]] = None,
    ) -> APIResponse:
        async def call():
            doc = await self._store.create(ctx, title, content, tags)
            return doc.model_dump(mode="json")

        return await self._execute("create_document", ctx, call, success_status=201)

    async def update_document(
        self,
        ctx: ExecutionContext,
        doc_id: int,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> APIResponse:
        async def call():
            doc = await self._store.update(
                ctx, doc_id, DocumentPatch.model_validate(patch), expected_version
            )
            return doc.model_dump(mode="json")

        return await self._execute("update_document", ctx, call)

    async def delete_document(self, ctx: ExecutionContext, doc_id: int) -> APIResponse:
        async def call():
            await self._store.delete(ctx, doc_id)
            return {"id": doc_id, "deleted": True}

        return await self._execute("delete_document", ctx, call)

    async def restore_version(
        self,
        ctx: ExecutionContext,
        doc_id: int,
        version_number: int,
    ) -> APIResponse:
        async def call():
            doc = await self._restore.restore(ctx, doc_id, version_number)
            return doc.model_dump(mode="json")

        return await self._execute("restore_version", ctx, call)

    async def summarize_document(self, ctx: ExecutionContext, doc_id: int) -> APIResponse:
        async def call():
            return {"summary": await self._store.force_summarize(ctx, doc_id)}

        return await self._execute("summarize_document", ctx, call)

    async def tag_document(self, ctx: ExecutionContext, doc_id: int) -> APIResponse:
        async def call():
            return {"tags": await self._store.force_tags(ctx, doc_id)}

        return await self._execute("tag_document", ctx, call)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    async def get_document(self, ctx: ExecutionContext, doc_id: int) -> APIResponse:
        async def call():
            return self._store.get(doc_id).model_dump(mode="json")

        return await self._execute("get_document", ctx, call)

    async def list_documents(
        self,
        ctx: ExecutionContext,
        offset: int = 0,
        limit: Optional[int] = None,
        mine: bool = False,
        tags: Optional[List[str]] = None,
    ) -> APIResponse:
        async def call():
            page = self._store.list_documents(
                offset=offset,
                limit=self._page_size if limit is None else limit,
                owner_id=ctx.user_id if mine else None,
                tags=tags,
            )
            return page.model_dump(mode="json")

        return await self._execute("list_documents", ctx, call)

    async def get_versions(
        self,
        ctx: ExecutionContext,
        doc_id: int,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> APIResponse:
        async def call():
            page = self._store.get_versions(doc_id, offset, self._page_size if limit is None else limit)
            return page.model_dump(mode="json")

        return await self._execute("get_versions", ctx, call)

    async def get_activity_feed(
        self,
        ctx: ExecutionContext,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> APIResponse:
        async def call():
            page = self._store.activity_feed(offset, self._page_size if limit is None else limit)
            return {
                "activities": [a.to_feed_item() for a in page.activities],
                "total": page.total,
                "has_more": page.has_more,
            }

        return await self._execute("get_activity_feed", ctx, call)

    async def get_document_activity(self, ctx: ExecutionContext, doc_id: int) -> APIResponse:
        async def call():
            return {"activities": [a.to_feed_item() for a in self._store.document_history(doc_id)]}

        return await self._execute("get_document_activity", ctx, call)

    # -------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        ctx: ExecutionContext,
        call: Callable[[], Awaitable[Any]],
        success_status: int = 200,
    ) -> APIResponse:
        start_time = time.monotonic()
        set_execution_context(ctx)
        try:
            body = await call()
            return APIResponse(status_code=success_status, body=body)

        except KBError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            level = logging.ERROR if e.status_code >= 500 else logging.INFO
            logger.log(level, f"{operation} failed ({e.kind}) in {duration_ms:.1f}ms: {e.message}")
            return APIResponse(
                status_code=e.status_code,
                body=e.to_response(expose_details=self._expose_details),
            )

        except ValidationError as e:
            return APIResponse(
                status_code=400,
                body={"kind": "validation_error", "message": f"Invalid request: {e.error_count()} error(s)"},
            )

        except Exception as e:
            logger.exception(f"Unhandled error in {operation}: {e}")
            return APIResponse(status_code=500, body=dict(GENERIC_ERROR))

        finally:
            clear_execution_context()
