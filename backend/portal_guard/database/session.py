"""
Database engine and session factory.

Configuration (environment variables):
- DATABASE_URL:             SQLAlchemy URL (``postgres://`` is rewritten)
- PORTAL_STORE_TIMEOUT_MS:  Postgres statement_timeout applied to every
                            connection so no store call blocks indefinitely
"""

import logging
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from portal_guard.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(database_url: str, timeout_ms: int = 5000) -> Engine:
    """Create an engine; Postgres connections get a statement timeout."""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("postgresql"):
        kwargs["connect_args"] = {"options": f"-c statement_timeout={int(timeout_ms)}"}
        kwargs["pool_timeout"] = max(1, int(timeout_ms / 1000))
    return create_engine(database_url, **kwargs)


def configure_engine(engine: Engine) -> None:
    """Install ``engine`` as the process-wide engine (app start-up, tests)."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_engine(settings: Optional[Settings] = None) -> Engine:
    global _engine
    if _engine is None:
        settings = settings or get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")
        configure_engine(create_db_engine(settings.database_url, settings.store_timeout_ms))
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        get_engine()
    return _session_factory


def get_db_session_sync() -> Iterator[Session]:
    """Yield a session and always close it."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def get_db_session() -> Iterator[Session]:
    """FastAPI dependency form of :func:`get_db_session_sync`."""
    yield from get_db_session_sync()
