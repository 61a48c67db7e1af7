"""
db/session.py

SQLAlchemy engine and session factory shared by the API, scheduler and workers.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.config import get_database_settings, is_supported_database_url


def create_db_engine(database_url: str | None = None) -> Engine:
    settings = get_database_settings(database_url)
    if not is_supported_database_url(settings.url):
        raise RuntimeError("Only PostgreSQL and SQLite URLs are supported.")

    if settings.is_sqlite:
        # Workers and the scheduler write from several threads.
        return create_engine(
            settings.url,
            echo=settings.echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_engine(
        settings.url,
        echo=settings.echo,
        pool_pre_ping=True,
        pool_recycle=settings.pool_recycle_seconds,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        class_=Session,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory
