"""Stamp database access for embroot.

This module handles:
- Engine creation for the stamp database (SQLite by default)
- SQLite connection pragmas so build workers and concurrent embroot
  processes can record stamps without "database is locked" failures
- Session factories and a transactional session scope
- Schema creation for the ORM models
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from embroot.config import get_settings

# Milliseconds a writer waits for another connection's lock
SQLITE_BUSY_TIMEOUT_MS = 30_000


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _sqlite_file(db_url: str) -> Path | None:
    """Database file of a file-backed SQLite URL, else None."""
    if not db_url.startswith("sqlite:///"):
        return None
    path = db_url.removeprefix("sqlite:///")
    if not path or path == ":memory:":
        return None
    return Path(path)


def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create the stamp database engine.

    File-backed SQLite databases get their parent directory created and
    run in WAL mode with a busy timeout.

    Args:
        db_url: Database URL. Defaults to ``Settings.db_url``.

    Returns:
        SQLAlchemy Engine.
    """
    if db_url is None:
        db_url = get_settings().db_url

    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    db_file = _sqlite_file(db_url)
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(db_url, connect_args=connect_args, echo=False)
    if db_file is not None:
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Create a session factory bound to ``engine`` (or the default engine)."""
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Commits when the block succeeds and rolls back when it raises.

    Args:
        session_factory: Optional session factory. Creates one if not provided.

    Yields:
        SQLAlchemy Session instance.
    """
    if session_factory is None:
        session_factory = get_session_factory()

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the tables of every ORM model that do not exist yet."""
    # Register models with the mapper before creating tables
    from embroot.builds import models as builds_models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


def init_stamp_database(db_url: str | None = None) -> sessionmaker[Session]:
    """Open the stamp database, creating its schema, and return a session factory."""
    engine = get_engine(db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


__all__ = [
    "Base",
    "SQLITE_BUSY_TIMEOUT_MS",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_stamp_database",
]
