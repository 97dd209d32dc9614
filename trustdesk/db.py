"""Engine, session factory and session helpers for the trustdesk backend."""
from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from trustdesk.config import Settings, get_settings
from trustdesk.models.base import Base

engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def _engine_kwargs(settings: Settings) -> dict[str, object]:
    """SQLite runs single-file with threads sharing a connection; servers get a checked pool."""

    kwargs: dict[str, object] = {"future": True, "echo": settings.DB_ECHO}
    if settings.database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_size"] = settings.DB_POOL_SIZE
    return kwargs


def init_engine() -> Engine:
    """Create the engine and session factory from the current settings, once."""

    global engine, SessionLocal
    if engine is None:
        settings = get_settings()
        engine = create_engine(settings.database_url, **_engine_kwargs(settings))
        SessionLocal = sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
    return engine


def get_engine() -> Engine:
    if engine is None:
        return init_engine()
    return engine


def get_sessionmaker() -> sessionmaker[Session]:
    if SessionLocal is None:
        init_engine()
    assert SessionLocal is not None  # for type-checkers
    return SessionLocal


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record) -> None:  # pragma: no cover
    """Escrow history, conditions and dispute children rely on FK cascades."""

    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@contextmanager
def session_scope(db_session: Session | None = None) -> Iterator[Session]:
    """Yield ``db_session`` as is, or a fresh session that is closed on exit.

    Background sweeps and the scheduler lock accept an optional session so they
    can run inside a caller's transaction (tests, admin scripts) or on their own.
    """

    if db_session is not None:
        yield db_session
        return
    session = get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()


def create_all() -> None:
    """Create every table from the model metadata (dev only; prod uses Alembic)."""

    Base.metadata.create_all(bind=get_engine())


def close_engine() -> None:
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
        engine = None
        SessionLocal = None


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""

    with session_scope() as session:
        yield session


__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "create_all",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "init_engine",
    "close_engine",
    "session_scope",
]
