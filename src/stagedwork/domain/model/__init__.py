"""Domain model for staged writes."""

from __future__ import annotations

from .entity_types import EntityType, describe_record, index_by_class, normalize_entity_types
from .enums import (
    AccessLevel,
    CommitState,
    DeleteOrder,
    EnforcementMode,
    EventPhase,
    OperationKind,
)
from .operations import (
    DeferredEvent,
    ExecutionOptions,
    FieldMask,
    PendingOperation,
    RowError,
    RowResult,
    format_mask,
)

__all__ = [
    "AccessLevel",
    "CommitState",
    "DeferredEvent",
    "DeleteOrder",
    "EnforcementMode",
    "EntityType",
    "EventPhase",
    "ExecutionOptions",
    "FieldMask",
    "OperationKind",
    "PendingOperation",
    "RowError",
    "RowResult",
    "describe_record",
    "format_mask",
    "index_by_class",
    "normalize_entity_types",
]
