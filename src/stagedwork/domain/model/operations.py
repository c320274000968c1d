"""Value objects exchanged between the coordinator, strategies and executors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .enums import AccessLevel, EnforcementMode, EventPhase

if TYPE_CHECKING:
    from .entity_types import EntityType
    from .enums import OperationKind


type FieldMask = frozenset[str]


@dataclass(slots=True, eq=False)
class PendingOperation:
    """One record awaiting a write of ``kind``.

    ``field_mask`` restricts an update to the named fields; ``None`` means all fields.
    """

    entity_type: EntityType
    record: object
    kind: OperationKind
    field_mask: FieldMask | None = None

    def merge_mask(self, field_mask: FieldMask | None) -> None:
        if self.field_mask is None or field_mask is None:
            self.field_mask = None
            return
        self.field_mask = self.field_mask | field_mask


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """How a bulk write should be enforced by the storage layer."""

    mode: EnforcementMode = EnforcementMode.SYSTEM
    access_level: AccessLevel | None = None
    all_or_none: bool = True


@dataclass(frozen=True, slots=True)
class RowError:
    message: str
    fields: tuple[str, ...] = ()
    code: str | None = None

    def __str__(self) -> str:
        prefix = f"[{self.code}] " if self.code else ""
        suffix = f" (fields: {', '.join(self.fields)})" if self.fields else ""
        return f"{prefix}{self.message}{suffix}"


@dataclass(frozen=True, slots=True)
class RowResult:
    """Outcome of writing one record; ``identity`` is set for successful inserts."""

    record: object
    success: bool
    identity: object | None = None
    errors: tuple[RowError, ...] = ()

    @classmethod
    def ok(cls, record: object, identity: object | None = None) -> RowResult:
        return cls(record=record, success=True, identity=identity)

    @classmethod
    def failed(cls, record: object, *errors: RowError) -> RowResult:
        return cls(record=record, success=False, errors=errors)


@dataclass(frozen=True, slots=True, eq=False)
class DeferredEvent:
    """Domain event queued for publication at one lifecycle point."""

    phase: EventPhase
    payload: object
    sequence: int = field(default=0, compare=False)


def format_mask(field_mask: FieldMask | None) -> str:
    if field_mask is None:
        return "*"
    return ",".join(sorted(field_mask))
