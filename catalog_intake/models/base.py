"""Declarative base, engine construction, and transactional sessions.

SQLite serves development and tests only. An approval keeps its write
transaction open while the inventory gateway is called, and SQLite locks the
whole file for that time; settings therefore require the HTTP timeout to stay
below the SQLite busy timeout. Production runs on a pooled server database.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from importlib import import_module
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, create_engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, close_all_sessions, sessionmaker

from ..utils.config import get_settings

if TYPE_CHECKING:
    from ..utils.config import GlobalSettings

DEFAULT_DATABASE_URL = "sqlite:///./catalog_intake.db"
MODEL_MODULES = ("submission", "feedback", "template")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_sqlite(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def engine_options(settings: GlobalSettings) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` matching the configured backend."""

    database_url = settings.database_url or DEFAULT_DATABASE_URL
    if is_sqlite(database_url):
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.sqlite_busy_timeout_seconds,
            }
        }

    pool = settings.database
    options: dict[str, Any] = {
        "pool_size": pool.pool_size,
        "max_overflow": pool.max_overflow,
        "pool_timeout": pool.timeout,
        "pool_pre_ping": pool.pre_ping,
    }
    if pool.recycle_seconds > 0:
        options["pool_recycle"] = pool.recycle_seconds
    return options


@dataclass(frozen=True)
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_database: _Database | None = None
_database_lock = threading.Lock()


def _open_database() -> _Database:
    settings = get_settings()
    engine = create_engine(
        settings.database_url or DEFAULT_DATABASE_URL, **engine_options(settings)
    )
    # Mapped classes must be registered before create_all.
    for module in MODEL_MODULES:
        import_module(f"{__package__}.{module}")
    Base.metadata.create_all(bind=engine)
    return _Database(
        engine=engine,
        sessions=sessionmaker(bind=engine, autoflush=False, expire_on_commit=False),
    )


def _current_database() -> _Database:
    global _database
    with _database_lock:
        if _database is None:
            _database = _open_database()
        return _database


def get_engine() -> Engine:
    """Return the shared engine, creating tables on first use."""

    return _current_database().engine


def get_session() -> Session:
    return _current_database().sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit when the block exits cleanly, roll back and re-raise otherwise."""

    with get_session() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def reset_engine() -> None:
    """Dispose the shared engine so the next use rereads settings."""

    global _database
    with _database_lock:
        if _database is not None:
            close_all_sessions()
            _database.engine.dispose()
        _database = None
