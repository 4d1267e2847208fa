"""Database engine and session helpers."""

from portal_guard.database.session import (
    configure_engine,
    create_db_engine,
    get_db_session,
    get_db_session_sync,
    get_engine,
    get_session_factory,
)

__all__ = [
    "configure_engine",
    "create_db_engine",
    "get_db_session",
    "get_db_session_sync",
    "get_engine",
    "get_session_factory",
]
