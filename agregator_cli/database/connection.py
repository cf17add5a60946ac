"""
Database connection management for Agregator CLI.

A single SQLAlchemy engine is shared by the scheduler, the worker threads
and the CLI commands. Components accept a ``sessionmaker`` so tests and
embedding code can point them at another database.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from agregator_cli.config import get_config, AgregatorConfig

logger = logging.getLogger(__name__)

# Global engine and session factory (lazy-loaded)
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_path(config: Optional[AgregatorConfig] = None) -> Optional[Path]:
    """
    Get the database file path.

    Args:
        config: Agregator configuration (uses global if not provided)

    Returns:
        Path to the SQLite database file, or None for other backends
    """
    if config is None:
        config = get_config()

    # Extract path from database_url (sqlite:///path)
    db_url = config.database_url
    if db_url.startswith("sqlite:///"):
        return Path(db_url[10:])

    return None


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite databases get a busy timeout so concurrent workers queue behind
    each other's writes instead of failing, and WAL journaling so readers
    do not block the writer.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)

    engine = create_engine(
        database_url,
        connect_args={
            "check_same_thread": False,  # Worker threads share the pool
            "timeout": 30,  # Busy timeout in seconds
        },
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL debugging
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable foreign keys and WAL journaling."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if ":memory:" not in database_url:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def init_engine(config: Optional[AgregatorConfig] = None) -> Engine:
    """
    Initialize the global SQLAlchemy engine.

    Args:
        config: Agregator configuration (uses global if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    if config is None:
        config = get_config()

    # Ensure database directory exists
    db_path = get_db_path(config)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    _engine = create_db_engine(config.database_url)

    logger.debug(f"Database engine initialized: {config.database_url}")
    return _engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to ``engine``."""
    # Loaded rows are handed across threads after commit
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def get_session_maker(config: Optional[AgregatorConfig] = None) -> sessionmaker:
    """
    Get or create the global session maker.

    Args:
        config: Agregator configuration (uses global if not provided)

    Returns:
        Configured session maker
    """
    global _SessionLocal

    if _SessionLocal is not None:
        return _SessionLocal

    engine = init_engine(config)
    _SessionLocal = make_session_factory(engine)

    return _SessionLocal


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Open a session from ``session_factory`` for one unit of work.

    Commits on success, rolls back and re-raises on error.
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    """Dispose the global engine and forget the session maker."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def create_tables(config: Optional[AgregatorConfig] = None) -> None:
    """
    Create all database tables.

    Args:
        config: Agregator configuration (uses global if not provided)
    """
    from agregator_cli.database.models import Base

    engine = init_engine(config)
    Base.metadata.create_all(bind=engine)
    logger.debug("Database tables created")
