"""Database models and storage layer."""

from .database import (
    Base,
    configure_database,
    create_session,
    create_tables,
    drop_tables,
    get_db,
    reset_database_engine,
)
from .models import WorkflowModel

__all__ = [
    "Base",
    "configure_database",
    "create_session",
    "create_tables",
    "drop_tables",
    "get_db",
    "reset_database_engine",
    "WorkflowModel",
]
