"""Database package."""

from esign_compliance.database.database import (
    DatabaseConfig,
    dispose_engine,
    get_db,
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "DatabaseConfig",
    "dispose_engine",
    "get_db",
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
]
