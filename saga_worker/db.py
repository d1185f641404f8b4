"""
Database helpers for the saga service.

Synchronous SQLAlchemy session management shared by the Celery worker,
the CLI and the HTTP API. The engine is created lazily so that importing
modules (and tests) never opens a connection.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .db_models import Base
from .logging import logger

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.database_url,
            echo=settings.sql_echo,
            future=True,
            pool_pre_ping=True,
        )
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            bind=get_engine(),
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            class_=Session,
        )
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    Provide a transactional session from *factory*.

    Commits on success, rolls back and re-raises on error, always closes.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception("db_session_rollback", error=str(exc))
        raise
    finally:
        session.close()


@contextmanager
def get_session() -> Iterator[Session]:
    """
    Transactional session bound to the configured database.

    Usage:
        with get_session() as session:
            session.add(obj)
            # Commit happens automatically on exit
    """
    with session_scope(get_session_factory()) as session:
        yield session


def init_db() -> None:
    """Create tables directly from metadata. Development only; use Alembic elsewhere."""
    if settings.environment in ("staging", "production"):
        raise RuntimeError("init_db is for development; run `alembic upgrade head` instead.")
    Base.metadata.create_all(bind=get_engine())
    logger.info("db_initialized", url=get_engine().url.render_as_string(hide_password=True))


__all__ = ["get_engine", "get_session", "get_session_factory", "init_db", "session_scope"]
