"""Database configuration and session management for run history.

SQLite lives in `STACKVAULT_DB_DIR` (default `/app/db`, the container path)
under the fixed filename `stackvault.db`. If the directory is not usable at
runtime, the process logs an error and stops.
"""

from typing import Generator, Optional
from pathlib import Path
import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

DEFAULT_DB_FILENAME = "stackvault.db"
DEFAULT_DB_DIR = "/app/db"

logger = logging.getLogger(__name__)


def _db_dir() -> Path:
    return Path(os.getenv("STACKVAULT_DB_DIR", DEFAULT_DB_DIR))


def _ensure_dir(path: Path) -> tuple[bool, str]:
    try:
        if not path.exists():
            logger.warning("DB dir does not exist: %s. Attempting to create it", path)
        path.mkdir(parents=True, exist_ok=True)
        if not os.access(path, os.W_OK):
            return False, "directory not writable"
        return True, ""
    except OSError as exc:
        return False, str(exc)


def _build_sqlite_url(db_dir: Path) -> str:
    db_file = db_dir / DEFAULT_DB_FILENAME
    logger.info("DB file path: %s", db_file)
    # `sqlite:///` + absolute path results in four slashes (sqlite:////...) which SQLAlchemy expects
    return f"sqlite:///{db_file.resolve()}"


def _resolve_sql_echo() -> bool | str:
    """Resolve SQL echo flag from `LOG_SQL_ECHO` ("", truthy, or "debug")."""
    raw = os.getenv("LOG_SQL_ECHO", "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("debug", "2", "verbose"):
        return "debug"
    return False


_engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None

Base = declarative_base()


def get_engine() -> Engine:
    """Create the SQLAlchemy engine lazily."""
    global _engine, SessionLocal
    if _engine is not None:
        return _engine

    db_dir = _db_dir()
    ok, reason = _ensure_dir(db_dir)
    if not ok:
        logger.error("Database directory '%s' is not usable: %s", db_dir, reason)
        raise SystemExit(1)

    _engine = create_engine(
        _build_sqlite_url(db_dir),
        connect_args={"check_same_thread": False},  # Required for SQLite
        echo=_resolve_sql_echo(),
    )
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def open_session() -> Session:
    if SessionLocal is None:
        get_engine()
        assert SessionLocal is not None
    return SessionLocal()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a database session."""
    db = open_session()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Never drops anything."""
    from stackvault.models import Run, TaskRun  # noqa: F401

    logger.info("init_db: creating tables if missing")
    Base.metadata.create_all(bind=get_engine())
    logger.info("init_db: ensured tables exist")
