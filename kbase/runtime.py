"""
KBase Runtime — Process bootstrap that wires config, database, logging and
the AI collaborator into a DocumentStore / RestoreWorkflow / API.

Lifecycle:
    kb = KnowledgeBase(config)
    kb.startup()         # init subsystems
    ...
    await kb.shutdown()  # close AI client, flush logs

The runtime, not the store, owns the AI collaborator's lifecycle.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from kbase.ai.assistant import AIAssistant, build_assistant
from kbase.api import KnowledgeBaseAPI
from kbase.db.session import dispose, init_db
from kbase.documents.activity import ActivityRecorder
from kbase.documents.restore import RestoreWorkflow
from kbase.documents.store import DocumentStore
from kbase.engine.config import KBaseConfig, get_config
from kbase.engine.logging import (
    AsyncLogQueue,
    apply_retention,
    init_logging,
    log,
    log_system_event,
    shutdown_logging,
)

logger = logging.getLogger("kbase.runtime")


class KnowledgeBase:
    """
    Single entry point for a KBase process.

    Args:
        config: Loaded configuration (``get_config()`` if omitted).
        session_factory: Pre-built sessionmaker (tests); otherwise from config.
        assistant: Pre-built AI collaborator (tests); otherwise from config.
        create_tables: Run ``create_all`` at startup (dev / ``kbase init``).
    """

    def __init__(
        self,
        config: Optional[KBaseConfig] = None,
        session_factory: Optional[sessionmaker] = None,
        assistant: Optional[AIAssistant] = None,
        create_tables: bool = False,
    ):
        self.config = config or get_config()
        self._session_factory = session_factory
        self._assistant = assistant
        self._create_tables = create_tables

        # Subsystems (initialized in startup())
        self.log_queue: Optional[AsyncLogQueue] = None
        self.activity: Optional[ActivityRecorder] = None
        self.store: Optional[DocumentStore] = None
        self.restore: Optional[RestoreWorkflow] = None
        self.api: Optional[KnowledgeBaseAPI] = None

        self._started = False

    @property
    def session_factory(self) -> Optional[sessionmaker]:
        return self._session_factory

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def startup(self) -> "KnowledgeBase":
        """Initialize all subsystems."""
        if self._started:
            logger.warning("KnowledgeBase already started")
            return self

        cfg = self.config
        logging.getLogger("kbase").setLevel(cfg.logging.level.upper())
        logger.info(f"Starting {cfg.name} ({cfg.environment})...")

        # 1. Structured logging
        self.log_queue = init_logging(
            log_dir=cfg.logging.directory,
            flush_interval_ms=cfg.logging.async_queue.flush_interval_ms,
            flush_batch_size=cfg.logging.async_queue.flush_batch_size,
            max_queue_size=cfg.logging.async_queue.max_queue_size,
        )
        # 2. Database
        if self._session_factory is None:
            db = cfg.database
            self._session_factory = init_db(
                db.url,
                create_tables=self._create_tables,
                echo=db.echo,
                pool_size=db.pool_size,
                max_overflow=db.max_overflow,
                pool_timeout=db.pool_timeout,
                pool_recycle=db.pool_recycle,
                pool_pre_ping=db.pool_pre_ping,
            )

        # 3. AI collaborator
        if self._assistant is None:
            self._assistant = build_assistant(cfg.ai)

        # 4. Store, restore, API
        self.activity = ActivityRecorder(self._session_factory, spool_dir=cfg.spool_directory)
        self.store = DocumentStore(
            self._session_factory,
            self._assistant,
            activity=self.activity,
            max_versions=cfg.versioning.max_versions,
            max_tags=cfg.versioning.max_tags,
        )
        self.restore = RestoreWorkflow(self.store)
        self.api = KnowledgeBaseAPI(
            self.store,
            restore=self.restore,
            expose_details=not cfg.is_production,
            page_size=cfg.activity.page_size,
        )

        self._started = True
        log(log_system_event("kbase_started", details=self._subsystem_status()))
        logger.info(f"{cfg.name} started")
        return self

    async def shutdown(self) -> None:
        """Close the AI client, flush logs, dispose the engine."""
        if not self._started:
            return

        logger.info(f"Shutting down {self.config.name}...")
        if self._assistant is not None:
            await self._assistant.aclose()

        log(log_system_event("kbase_shutdown"))
        shutdown_logging()
        if self._session_factory is not None:
            dispose(self._session_factory)

        self._started = False
        logger.info(f"{self.config.name} shut down")

    async def __aenter__(self) -> "KnowledgeBase":
        return self.startup()

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def replay_activity(self) -> int:
        """Re-insert spooled activity entries. Returns the count restored."""
        return self.activity.replay_pending()

    def cleanup_logs(self) -> Dict[str, int]:
        """Prune and compress log files per the configured retention."""
        cfg = self.config.logging
        return apply_retention(
            cfg.directory,
            retention_days={
                "execution": cfg.retention.execution_days,
                "security": cfg.retention.security_days,
            },
            compress_after_days=cfg.compress_after_days,
        )

    def _subsystem_status(self) -> Dict[str, Any]:
        return {
            "environment": self.config.environment,
            "ai": getattr(self._assistant, "name", None),
            "max_versions": self.config.versioning.max_versions,
            "pending_activity": self.activity.pending_count() if self.activity else 0,
        }
