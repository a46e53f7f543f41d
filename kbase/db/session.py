"""
KBase Database Session Management.

Provides the single entry point for DB initialisation plus a context manager
for unit-of-work access.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

import sqlalchemy
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from kbase.db.base import Base


def create_db_engine(
    db_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Build the SQLAlchemy engine for ``db_url``.

    SQLite gets the pysqlite SAVEPOINT fix-up: the driver's own transaction
    handling is disabled and SQLAlchemy emits BEGIN itself, so nested
    transactions (used by the activity recorder) behave as on PostgreSQL.
    """
    if db_url.startswith("sqlite"):
        engine = sqlalchemy.create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

        @sqlalchemy.event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_conn, connection_record):
            dbapi_conn.isolation_level = None

        @sqlalchemy.event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    return sqlalchemy.create_engine(
        db_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )


def init_db(db_url: str, create_tables: bool = False, **engine_kwargs: Any) -> sessionmaker:
    """
    Single entry point for database initialisation.

    Args:
        db_url:        SQLAlchemy URL (postgresql://… in production, sqlite for dev/tests).
        create_tables: When True, run Base.metadata.create_all(). Dev/``kbase init`` only.
        engine_kwargs: Forwarded to create_db_engine (echo, pool settings).

    Returns:
        A ``sessionmaker`` bound to the new engine. ``expire_on_commit`` is off
        so committed rows can be converted to domain models after the scope ends.
    """
    # Register models on Base.metadata
    import kbase.db.models  # noqa: F401

    engine = create_db_engine(db_url, **engine_kwargs)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            row = session.get(DocumentRecord, 1)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose(factory: sessionmaker) -> None:
    """Dispose the engine bound to ``factory`` (close connection pool)."""
    bind = factory.kw.get("bind")
    if bind is not None:
        bind.dispose()
