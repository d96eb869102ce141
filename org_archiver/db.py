"""
Database engine and session helpers.

- Sync engine for PostgreSQL (psycopg2); the archiver runs in worker threads, not an event loop.
- Optional default database_url via set_database_url() so callers can use get_engine()/get_session_factory()
  without passing a URL.
- In-memory SQLite URLs get a StaticPool so every session sees the same database (tests, local dev).
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from org_archiver.base import Base
from org_archiver import models  # noqa: F401 - register live record tables with Base.metadata
from org_archiver import models_archive  # noqa: F401 - register Archive with Base.metadata

# Lazy init; default URL can be set by application at startup
_default_url: str | None = None
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def set_database_url(database_url: str) -> None:
    """Set the default database URL for get_engine() and get_session_factory()."""
    global _default_url
    _default_url = database_url


def _normalize_url(url: str) -> str:
    # accept async-style URLs from shared config; the archiver always uses the sync driver
    return url.replace("postgresql+asyncpg", "postgresql")


def create_engine_for_url(database_url: str) -> Engine:
    """Create a new engine for database_url (not cached)."""
    url = _normalize_url(database_url)
    if url.startswith("sqlite") and (url.endswith("sqlite://") or ":memory:" in url):
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, pool_size=10, max_overflow=20)


def get_engine(database_url: str | None = None) -> Engine:
    """
    Create or return the process-wide engine.
    Uses default URL from set_database_url() if database_url is not provided.
    """
    global _engine
    url = database_url or _default_url
    if url is None:
        raise RuntimeError("database_url not set: call set_database_url() or pass database_url= to get_engine()")
    if _engine is None:
        _engine = create_engine_for_url(url)
    return _engine


def init_db(engine: Engine | None = None, database_url: str | None = None) -> None:
    """
    Create tables (for init / tests).
    If engine is provided, use it; otherwise create from database_url or default URL.
    """
    if engine is None:
        engine = get_engine(database_url)
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to engine; objects stay usable after commit."""
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


def get_session_factory(database_url: str | None = None) -> sessionmaker[Session]:
    """Return session factory. Uses default URL from set_database_url() if not provided."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine(database_url))
    return _session_factory


def reset_engine() -> None:
    """Dispose the cached engine and forget the default URL (tests, reconfiguration)."""
    global _default_url, _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _default_url = None
    _engine = None
    _session_factory = None


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Context manager for a single DB session (commit on success, rollback on error)."""
    factory = factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
