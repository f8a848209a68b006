"""Database connection and session management."""

from typing import Iterator, Optional

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.logging import get_logger

logger = get_logger(__name__)

# Base class for all database models
Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

DEFAULT_DATABASE_URL = "sqlite:///./reconflow.db"


def configure_database(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """Create the global engine and session factory, replacing any previous ones."""
    global _engine, _session_factory

    reset_database_engine()

    if database_url.startswith("sqlite"):
        # one shared connection, so in-memory databases survive across sessions
        _engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )
    else:
        _engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    logger.info(f"Database configured: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_database_engine() -> Engine:
    """Return the configured engine, configuring the default database on first use."""
    if _engine is None:
        configure_database()
    return _engine


def reset_database_engine() -> None:
    """Dispose of the global engine (mainly for testing)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def create_session() -> Session:
    get_database_engine()
    return _session_factory()


def get_db() -> Iterator[Session]:
    """Dependency to get database session."""
    db = create_session()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create all database tables."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=get_database_engine())


def drop_tables() -> None:
    """Drop all database tables."""
    Base.metadata.drop_all(bind=get_database_engine())
