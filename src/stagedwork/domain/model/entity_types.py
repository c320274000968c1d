"""Entity type descriptors and record identity semantics.

A record is any Python object whose class was declared to the coordinator.
Before its first insert a record has no identity (its ``id_field`` is ``None``);
bookkeeping until then is done by reference (``id(record)``), never by value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


@dataclass(frozen=True, slots=True)
class EntityType:
    """Registrable kind of record."""

    record_class: type[Any]
    name: str = field(default="")
    id_field: str = "id"
    soft_delete_field: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.record_class.__name__)

    def __str__(self) -> str:
        return self.name

    @classmethod
    def of(cls, value: EntityType | type[Any]) -> EntityType:
        if isinstance(value, EntityType):
            return value
        return cls(record_class=value)

    def owns(self, record: object) -> bool:
        return type(record) is self.record_class

    def identity_of(self, record: object) -> object | None:
        return getattr(record, self.id_field, None)

    def has_identity(self, record: object) -> bool:
        return self.identity_of(record) is not None

    def assign_identity(self, record: object, identity: object) -> None:
        setattr(record, self.id_field, identity)


def normalize_entity_types(values: Iterable[EntityType | type[Any]]) -> tuple[EntityType, ...]:
    """Wrap bare classes into descriptors while keeping the declared order."""

    return tuple(EntityType.of(value) for value in values)


def describe_record(entity_type: EntityType, record: object) -> str:
    identity = entity_type.identity_of(record)
    if identity is None:
        return f"{entity_type.name}(new@{id(record):#x})"
    return f"{entity_type.name}({identity!r})"


def index_by_class(entity_types: Sequence[EntityType]) -> dict[type[Any], EntityType]:
    return {entity_type.record_class: entity_type for entity_type in entity_types}
