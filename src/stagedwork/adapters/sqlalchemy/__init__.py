"""SQLAlchemy adapter package for stagedwork."""

from __future__ import annotations

from .executor import SqlAlchemyBulkWriteExecutor
from .lookup import SqlAlchemyLookupService
from .mapping import column_for, mapper_for
from .savepoints import SqlAlchemySavepointProvider
from .session import (
    SqlAlchemyStorage,
    StartupError,
    configured_engine,
    enable_sqlite_savepoints,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyBulkWriteExecutor",
    "SqlAlchemyLookupService",
    "SqlAlchemySavepointProvider",
    "SqlAlchemyStorage",
    "StartupError",
    "column_for",
    "configured_engine",
    "enable_sqlite_savepoints",
    "is_started",
    "mapper_for",
    "shutdown",
    "startup",
]
