# offline_sync/storage/db.py
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.kv_entry  # noqa: F401


_engine: Optional[Engine] = None


def create_db_engine(path: Optional[Path] = None) -> Engine:
    """Build an engine for the SQLite file at ``path`` (``None`` means in-memory)."""

    if path is None:
        return create_engine("sqlite://", echo=False)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{target.as_posix()}", echo=False)


def init_db(engine: Optional[Engine] = None) -> Engine:
    actual_engine = engine or get_engine()
    SQLModel.metadata.create_all(actual_engine)
    return actual_engine


def get_engine() -> Engine:
    """Return (and lazily create) the engine for the default queue database."""

    global _engine
    if _engine is None:
        _engine = create_db_engine(DB_PATH)
    return _engine


def get_session(engine: Optional[Engine] = None) -> Session:
    return Session(engine or get_engine())
