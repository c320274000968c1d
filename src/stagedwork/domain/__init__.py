"""Unit-of-work coordination: registration, relationship wiring and the commit protocol."""

from __future__ import annotations

from .coordinator import UnitOfWorkCoordinator
from .effects import CallableWork, DeferredEffects
from .errors import (
    AlreadyCommittedError,
    BatchWriteError,
    CommitFailedError,
    ConfigurationError,
    CustomWorkError,
    DispatchError,
    HookError,
    InvalidRegistrationError,
    RelationshipResolutionError,
    RowLevelWriteError,
    SavepointError,
    UnitOfWorkError,
)
from .hooks import CommitHooks
from .registry import EntityBatchRegistry
from .relationships import ExternalIdLink, Link, RecordLink, Relationship, RelationshipResolver
from .results import CommitResult
from .strategies import (
    SystemModeWriteStrategy,
    UserModeWriteStrategy,
    WriteStrategy,
    build_write_strategy,
)

__all__ = [
    "AlreadyCommittedError",
    "BatchWriteError",
    "CallableWork",
    "CommitFailedError",
    "CommitHooks",
    "CommitResult",
    "ConfigurationError",
    "CustomWorkError",
    "DeferredEffects",
    "DispatchError",
    "EntityBatchRegistry",
    "ExternalIdLink",
    "HookError",
    "InvalidRegistrationError",
    "Link",
    "RecordLink",
    "Relationship",
    "RelationshipResolutionError",
    "RelationshipResolver",
    "RowLevelWriteError",
    "SavepointError",
    "SystemModeWriteStrategy",
    "UnitOfWorkCoordinator",
    "UnitOfWorkError",
    "UserModeWriteStrategy",
    "WriteStrategy",
    "build_write_strategy",
]
