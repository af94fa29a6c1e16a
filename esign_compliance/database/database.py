"""Database connection and session management."""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from esign_compliance.models.base import Base


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    host: str = "localhost"
    port: int = 5432
    database: str = "esign"
    username: str = "postgres"
    password: str = ""
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False
    # Full URL override (DATABASE_URL); takes precedence over the parts above
    url_override: Optional[str] = None

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create config from environment variables."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "esign"),
            username=os.getenv("DB_USER", "postgres"),
            password=os.getenv("DB_PASSWORD", ""),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url_override=os.getenv("DATABASE_URL") or None,
        )

    @property
    def url(self) -> str:
        """Generate SQLAlchemy database URL."""
        if self.url_override:
            return self.url_override
        return f"postgresql://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_engine() appropriate to the backend."""
        if self.is_sqlite:
            # One shared connection so in-memory databases survive across sessions
            return {
                "echo": self.echo,
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            }
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "echo": self.echo,
            "pool_pre_ping": True,
        }


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def get_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    """Process-wide engine, built from the environment on first use."""
    global _engine

    if _engine is None:
        config = config or DatabaseConfig.from_env()
        _engine = create_engine(config.url, **config.engine_options())

    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory

    if _session_factory is None:
        # Objects stay readable after commit; notifications and responses use them
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)

    return _session_factory


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    One unit of work: commit on success, roll back on any exception.

    Used directly by notification tasks and security auditing, which write
    outside the request transaction.
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency wrapping each request in get_db_context()."""
    with get_db_context() as session:
        yield session


def init_db() -> None:
    """Create all tables directly. Tests and local runs only; deployments use Alembic."""
    import esign_compliance.models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def dispose_engine() -> None:
    """Drop the engine and session factory so the next use rebuilds them."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
