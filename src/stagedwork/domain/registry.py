"""Type-ordered buckets of pending writes.

Buckets are keyed by entity type and operation kind; inside a bucket, records are
keyed by reference (``id(record)``) so two equal-but-distinct records remain two
pending writes while registering the same record twice stays a single one.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

from stagedwork.domain.errors import ConfigurationError, InvalidRegistrationError
from stagedwork.domain.model import (
    EntityType,
    OperationKind,
    PendingOperation,
    describe_record,
    index_by_class,
    normalize_entity_types,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from stagedwork.domain.model import FieldMask


type _Bucket = dict[int, PendingOperation]


def _new_buckets() -> dict[OperationKind, _Bucket]:
    return {kind: {} for kind in OperationKind}


class EntityBatchRegistry:
    """Ordered collection of per-type, per-kind batches."""

    def __init__(self, entity_types: Iterable[EntityType | type[Any]]) -> None:
        declared = normalize_entity_types(entity_types)
        counts = Counter(entity_type.record_class for entity_type in declared)
        duplicates = sorted(cls.__name__ for cls, count in counts.items() if count > 1)
        if duplicates:
            raise ConfigurationError(f"Entity types declared more than once: {duplicates}")
        self._entity_types = declared
        self._by_class = index_by_class(declared)
        self._buckets: dict[EntityType, dict[OperationKind, _Bucket]] = {
            entity_type: _new_buckets() for entity_type in declared
        }

    @property
    def entity_types(self) -> tuple[EntityType, ...]:
        return self._entity_types

    def __len__(self) -> int:
        return sum(
            len(bucket) for buckets in self._buckets.values() for bucket in buckets.values()
        )

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def resolve_entity_type(
        self,
        record: object,
        entity_type: EntityType | type[Any] | None = None,
    ) -> EntityType:
        """Return the declared descriptor for ``record`` or raise ``ConfigurationError``."""

        if entity_type is None:
            declared = self._by_class.get(type(record))
            if declared is None:
                raise ConfigurationError(
                    f"Entity type {type(record).__name__} is not declared for this unit of work"
                )
            return declared

        requested = EntityType.of(entity_type)
        declared = self._by_class.get(requested.record_class)
        if declared is None or (isinstance(entity_type, EntityType) and entity_type != declared):
            raise ConfigurationError(
                f"Entity type {requested.name} is not declared for this unit of work"
            )
        if not declared.owns(record):
            raise ConfigurationError(
                f"Record of type {type(record).__name__} does not belong to {declared.name}"
            )
        return declared

    def find_declared(self, entity_type: EntityType | type[Any]) -> EntityType | None:
        return self._by_class.get(EntityType.of(entity_type).record_class)

    def declared(self, entity_type: EntityType | type[Any]) -> EntityType:
        requested = EntityType.of(entity_type)
        declared = self._by_class.get(requested.record_class)
        if declared is None:
            raise ConfigurationError(
                f"Entity type {requested.name} is not declared for this unit of work"
            )
        return declared

    def register(
        self,
        kind: OperationKind,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
        fields: Iterable[str] | None = None,
    ) -> PendingOperation:
        """Append ``record`` to its bucket; a repeated registration returns the existing entry."""

        resolved = self.resolve_entity_type(record, entity_type)
        field_mask = self._validate(kind, resolved, record, fields)

        bucket = self._buckets[resolved][kind]
        existing = bucket.get(id(record))
        if existing is not None:
            if kind is OperationKind.UPDATE:
                existing.merge_mask(field_mask)
            return existing

        operation = PendingOperation(
            entity_type=resolved,
            record=record,
            kind=kind,
            field_mask=field_mask,
        )
        bucket[id(record)] = operation
        return operation

    def include_fields(self, record: object, fields: Iterable[str]) -> None:
        """Widen the sparse-update mask of ``record`` (if it has one) by ``fields``."""

        entity_type = self._by_class.get(type(record))
        if entity_type is None:
            return
        operation = self._buckets[entity_type][OperationKind.UPDATE].get(id(record))
        if operation is not None and operation.field_mask is not None:
            operation.merge_mask(frozenset(fields))

    def contains(self, record: object, kind: OperationKind) -> bool:
        entity_type = self._by_class.get(type(record))
        if entity_type is None:
            return False
        return id(record) in self._buckets[entity_type][kind]

    def get_registered(
        self,
        entity_type: EntityType | type[Any],
        kind: OperationKind,
    ) -> tuple[object, ...]:
        return tuple(operation.record for operation in self.pending(entity_type, kind))

    def pending(
        self,
        entity_type: EntityType | type[Any],
        kind: OperationKind,
    ) -> tuple[PendingOperation, ...]:
        return tuple(self._buckets[self.declared(entity_type)][kind].values())

    def field_mask_for(self, record: object) -> FieldMask | None:
        entity_type = self._by_class.get(type(record))
        if entity_type is None:
            return None
        operation = self._buckets[entity_type][OperationKind.UPDATE].get(id(record))
        return operation.field_mask if operation is not None else None

    def update_groups(
        self,
        entity_type: EntityType,
    ) -> Iterator[tuple[FieldMask | None, list[object]]]:
        """Yield consecutive runs of updates sharing one field mask, in registration order."""

        current_mask: FieldMask | None = None
        current: list[object] = []
        for operation in self._buckets[entity_type][OperationKind.UPDATE].values():
            if current and operation.field_mask != current_mask:
                yield current_mask, current
                current = []
            current_mask = operation.field_mask
            current.append(operation.record)
        if current:
            yield current_mask, current

    @staticmethod
    def _validate(
        kind: OperationKind,
        entity_type: EntityType,
        record: object,
        fields: Iterable[str] | None,
    ) -> FieldMask | None:
        has_identity = entity_type.has_identity(record)
        if kind is OperationKind.INSERT and has_identity:
            raise InvalidRegistrationError(
                f"Only new records can be registered as new: {describe_record(entity_type, record)}"
            )
        if kind.requires_identity and not has_identity:
            raise InvalidRegistrationError(
                f"New records cannot be registered for {kind}: "
                f"{describe_record(entity_type, record)}"
            )

        if fields is None:
            return None
        if kind is not OperationKind.UPDATE:
            raise InvalidRegistrationError(f"Field masks only apply to updates, not {kind}")
        field_mask = frozenset(fields)
        if not field_mask:
            raise InvalidRegistrationError("A field mask must name at least one field")
        unknown = sorted(name for name in field_mask if not hasattr(record, name))
        if unknown:
            raise InvalidRegistrationError(
                f"Unknown fields for {entity_type.name}: {', '.join(unknown)}"
            )
        return field_mask
