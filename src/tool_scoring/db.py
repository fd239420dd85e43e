"""Database connection and schema management.

The tool directory tables (tools, reviews, saves, structured reviews,
editorial and aggregated scores) live in ~/.tool-scoring/data.db by default.
Set DATA_DIR to move the SQLite file, or DATABASE_URL to point at another
async SQLAlchemy URL.

Each unit of work opens its own session from ``get_session_factory()``: one
per tool during a batch recalculation, and one for the whole featured
flag write-back so it commits or rolls back as a set. WAL mode lets the
featured listing be read while a write-back is in progress, and foreign
keys are enforced so reviews and saves cannot point at missing tools.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser("~/.tool-scoring")


def get_data_dir() -> Path:
    """Get the data directory, creating it if needed."""
    data_dir = Path(os.environ.get("DATA_DIR", DEFAULT_DATA_DIR))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_url() -> str:
    """Get the database URL, defaulting to a SQLite file in the data directory."""
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    db_path = get_data_dir() / "data.db"
    return f"sqlite+aiosqlite:///{db_path}"


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Enable WAL mode for concurrent reads during writes."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


_engine = None
_session_factory = None


def get_engine():
    global _engine
    if _engine is None:
        url = get_db_url()
        _engine = create_async_engine(url, echo=False)
        if url.startswith("sqlite"):
            event.listen(_engine.sync_engine, "connect", _set_sqlite_pragmas)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db():
    """Create all tables if they don't exist."""
    from .sqlmodels import Base

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized at %s", engine.url.render_as_string(hide_password=True))


async def close_db():
    """Close the database engine."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
