"""SQLModel database engine and session management."""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from autosell.config import settings

logger = logging.getLogger(__name__)


def make_engine(database_url: str | None = None) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    url = database_url or settings.database_url
    connect_args = {}
    kwargs = {}
    # SQLite needs check_same_thread=False; PostgreSQL does not
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=False, connect_args=connect_args, **kwargs)


def create_db_and_tables(engine: Engine):
    """Create all tables."""
    import autosell.models  # noqa: F401  registers tables on SQLModel.metadata

    SQLModel.metadata.create_all(engine)
    logger.debug(f"Tables ready on {engine.url}")
