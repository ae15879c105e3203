"""Engine and session factory for the HeyKaelo datastore."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from heykaelo.config import DATABASE_URL
from heykaelo.db.models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str | None = None) -> Engine:
    """Create an engine for *url* (defaults to ``DATABASE_URL``).

    In-memory SQLite gets a ``StaticPool`` so every session sees the same
    database, and SQLite in general is opened with
    ``check_same_thread=False`` because webhook turns run in worker threads.
    """
    url = url or DATABASE_URL
    kwargs: dict = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Return a session factory whose objects stay readable after commit."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(engine)
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))
