# storage/db.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.pending_action  # noqa: F401
from storage import migrations


_engine: Optional[Engine] = None


def create_queue_engine(path: Path | str | None = None) -> Engine:
    """Return an engine for the queue database at ``path`` (``None`` = in-memory)."""

    if path is None:
        # One shared connection, otherwise every thread sees its own empty database.
        return create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def init_db(engine: Optional[Engine] = None) -> Engine:
    actual = engine or get_engine()
    SQLModel.metadata.create_all(actual)
    migrations.run_all(actual)
    return actual


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_queue_engine(DB_PATH)
    return _engine


def get_session() -> Session:
    return Session(get_engine())


def session_factory_for(engine: Engine) -> Callable[[], Session]:
    def factory() -> Session:
        return Session(engine)

    return factory


__all__ = [
    "create_queue_engine",
    "get_engine",
    "get_session",
    "init_db",
    "session_factory_for",
]
