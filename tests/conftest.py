"""
KBase Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from kbase.ai.assistant import AIAssistant
from kbase.db.session import dispose, init_db
from kbase.documents.activity import ActivityRecorder
from kbase.documents.restore import RestoreWorkflow
from kbase.documents.store import DocumentStore
from kbase.engine.context import ExecutionContext, clear_execution_context
from kbase.engine.errors import KBIntegrationError


# ---------------------------------------------------------------------------
# Global state isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset global singletons between tests."""
    import kbase.engine.config as cfg_mod
    import kbase.engine.logging as log_mod

    cfg_mod._config = None
    yield
    cfg_mod._config = None
    log_mod.shutdown_logging()
    clear_execution_context()


# ---------------------------------------------------------------------------
# AI collaborators
# ---------------------------------------------------------------------------

class FakeAssistant(AIAssistant):
    """
    Deterministic collaborator. ``on_call`` (if set) runs inside every hook,
    which lets tests interleave a concurrent write with the AI await.
    """

    name = "fake"

    def __init__(
        self,
        summary: str = "Fake summary",
        tags: Optional[List[str]] = None,
        embedding: Optional[List[float]] = None,
        timeout_seconds: float = 1.0,
    ):
        super().__init__(timeout_seconds=timeout_seconds, tag_count=6)
        self.summary = summary
        self.tags = tags if tags is not None else ["alpha", "beta"]
        self.embedding = embedding if embedding is not None else [0.1, 0.2, 0.3]
        self.calls: List[str] = []
        self.on_call: Optional[Callable[[], None]] = None

    def _touch(self, operation: str) -> None:
        self.calls.append(operation)
        if self.on_call is not None:
            self.on_call()

    async def _summarize(self, text: str) -> str:
        self._touch("summarize")
        return self.summary

    async def _tag(self, text: str, count: int) -> List[str]:
        self._touch("tag")
        return list(self.tags)

    async def _embed(self, text: str) -> List[float]:
        self._touch("embed")
        return list(self.embedding)


class FailingAssistant(AIAssistant):
    """Every collaborator call fails, as when the AI service is down."""

    name = "failing"

    async def _summarize(self, text: str) -> str:
        raise KBIntegrationError("service unavailable", collaborator=self.name, status=503)

    async def _tag(self, text: str, count: int) -> List[str]:
        raise KBIntegrationError("service unavailable", collaborator=self.name, status=503)

    async def _embed(self, text: str) -> List[float]:
        raise KBIntegrationError("service unavailable", collaborator=self.name, status=503)


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def failing_assistant():
    return FailingAssistant(timeout_seconds=1.0)


# ---------------------------------------------------------------------------
# Database / store
# ---------------------------------------------------------------------------

@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'kbase.db'}"


@pytest.fixture
def session_factory(db_url):
    factory = init_db(db_url, create_tables=True)
    yield factory
    dispose(factory)


@pytest.fixture
def spool_dir(tmp_path):
    return str(tmp_path / "logs")


@pytest.fixture
def activity(session_factory, spool_dir):
    return ActivityRecorder(session_factory, spool_dir=spool_dir)


@pytest.fixture
def store(session_factory, assistant, activity):
    return DocumentStore(session_factory, assistant, activity=activity)


@pytest.fixture
def restore(store):
    return RestoreWorkflow(store)


# ---------------------------------------------------------------------------
# Callers
# ---------------------------------------------------------------------------

@pytest.fixture
def owner():
    return ExecutionContext(user_id=1, username="owner")


@pytest.fixture
def other_user():
    return ExecutionContext(user_id=2, username="other")


@pytest.fixture
def admin():
    return ExecutionContext(user_id=99, username="admin", user_type="admin")
