"""Pending links between an owner and a target whose identity may not exist yet.

A link is declared with one of two descriptors:

- ``RecordLink``: the target is another in-memory record, possibly still unsaved;
  the owner's field is assigned once that record has been inserted.
- ``ExternalIdLink``: the target is located in storage by an external identifier;
  all values requested for one (entity type, field) pair are resolved with a single
  lookup call per commit.

Resolution is incremental: the coordinator calls ``resolve_targets_of`` after each
type's inserts and upserts, and ``resolve_for_owner`` right before each batch is
written, which raises if anything owned by a record of that batch is still unresolved.
Links owned by auxiliary messages are left alone until ``resolve_detached`` runs
right before the message queue flushes, after the DML savepoint was released.
"""

from __future__ import annotations

from collections.abc import Hashable, MutableMapping
from dataclasses import dataclass, field, is_dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, cast

from stagedwork.domain.errors import InvalidRegistrationError, RelationshipResolutionError
from stagedwork.domain.model import EntityType, describe_record

if TYPE_CHECKING:
    from collections.abc import Collection

    from stagedwork.domain.ports import LookupService
    from stagedwork.domain.registry import EntityBatchRegistry

log = getLogger(__name__)


@dataclass(frozen=True, slots=True, eq=False)
class RecordLink:
    """Link ``field`` of the owner to the identity of ``target``."""

    field: str
    target: object


@dataclass(frozen=True, slots=True)
class ExternalIdLink:
    """Link ``field`` of the owner to the record of ``target_type`` whose
    ``external_id_field`` equals ``value``."""

    field: str
    target_type: EntityType | type[Any]
    external_id_field: str
    value: Hashable


type Link = RecordLink | ExternalIdLink


@dataclass(frozen=True, slots=True, eq=False)
class RecordTarget:
    entity_type: EntityType
    record: object

    def __str__(self) -> str:
        return describe_record(self.entity_type, self.record)


@dataclass(frozen=True, slots=True)
class ExternalIdTarget:
    entity_type: EntityType
    field: str
    value: Hashable

    @property
    def lookup_key(self) -> tuple[EntityType, str]:
        return self.entity_type, self.field

    def __str__(self) -> str:
        return f"{self.entity_type.name}[{self.field}={self.value!r}]"


type RelationshipTarget = RecordTarget | ExternalIdTarget


@dataclass(slots=True, eq=False)
class Relationship:
    """One pending link. ``owner_type`` is ``None`` for owners that are not records."""

    owner: object
    owner_type: EntityType | None
    field: str
    target: RelationshipTarget
    resolved: bool = False
    identity: object | None = None

    def __str__(self) -> str:
        owner = (
            describe_record(self.owner_type, self.owner)
            if self.owner_type is not None
            else type(self.owner).__name__
        )
        return f"{owner}.{self.field} -> {self.target}"

    def assign(self, identity: object) -> None:
        try:
            if isinstance(self.owner, MutableMapping):
                cast("MutableMapping[str, object]", self.owner)[self.field] = identity
            else:
                setattr(self.owner, self.field, identity)
        except (AttributeError, TypeError, ValueError) as exc:
            raise RelationshipResolutionError(
                [self], reason=f"cannot assign {self.field!r}: {exc}"
            ) from exc
        self.identity = identity
        self.resolved = True


@dataclass(slots=True)
class RelationshipResolver:
    """Tracks pending relationships and wires identities into owners."""

    registry: EntityBatchRegistry
    _relationships: list[Relationship] = field(default_factory=list[Relationship], repr=False)
    _lookup_cache: dict[tuple[EntityType, str], dict[Hashable, object]] = field(
        default_factory=dict[tuple[EntityType, str], dict[Hashable, object]], repr=False
    )
    lookup_calls: int = 0

    @property
    def relationships(self) -> tuple[Relationship, ...]:
        return tuple(self._relationships)

    def unresolved(self) -> tuple[Relationship, ...]:
        return tuple(
            relationship for relationship in self._relationships if not relationship.resolved
        )

    def pending_for(self, owner: object) -> tuple[Relationship, ...]:
        return tuple(
            relationship for relationship in self._relationships if relationship.owner is owner
        )

    def add(self, owner: object, link: Link, *, detached: bool = False) -> Relationship:
        """Track ``link``; a later link on the same owner field replaces the earlier one."""

        return self.store(self.build(owner, link, detached=detached))

    def build(self, owner: object, link: Link, *, detached: bool = False) -> Relationship:
        """Validate ``link`` and return its relationship without tracking it."""

        owner_type = None if detached else self.registry.resolve_entity_type(owner)
        if owner_type is not None and not hasattr(owner, link.field):
            raise InvalidRegistrationError(
                f"{owner_type.name} has no field {link.field!r} to hold a relationship"
            )
        if owner_type is None and not _can_hold(owner, link.field):
            raise InvalidRegistrationError(
                f"{type(owner).__name__} cannot hold a relationship in {link.field!r}"
            )

        target: RelationshipTarget
        match link:
            case RecordLink(target=target_record):
                target = RecordTarget(
                    entity_type=self.registry.resolve_entity_type(target_record),
                    record=target_record,
                )
            case ExternalIdLink(target_type=target_type, external_id_field=id_field, value=value):
                target = ExternalIdTarget(
                    entity_type=self._external_type(target_type),
                    field=id_field,
                    value=value,
                )

        return Relationship(
            owner=owner,
            owner_type=owner_type,
            field=link.field,
            target=target,
        )

    def store(self, relationship: Relationship) -> Relationship:
        self._relationships = [
            existing
            for existing in self._relationships
            if not (existing.owner is relationship.owner and existing.field == relationship.field)
        ]
        self._relationships.append(relationship)
        return relationship

    def link(self, owner: object, field: str, target: object) -> Relationship:
        return self.add(owner, RecordLink(field=field, target=target))

    def link_by_external_id(
        self,
        owner: object,
        field: str,
        target_type: EntityType | type[Any],
        external_id_field: str,
        value: Hashable,
    ) -> Relationship:
        return self.add(
            owner,
            ExternalIdLink(
                field=field,
                target_type=target_type,
                external_id_field=external_id_field,
                value=value,
            ),
        )

    def resolve_targets_of(self, entity_type: EntityType) -> int:
        """Assign every record-owned link whose target of ``entity_type`` now has an identity."""

        resolved = 0
        for relationship in self._relationships:
            target = relationship.target
            if relationship.resolved or not isinstance(target, RecordTarget):
                continue
            if relationship.owner_type is None:
                continue
            if target.entity_type != entity_type:
                continue
            identity = entity_type.identity_of(target.record)
            if identity is not None:
                relationship.assign(identity)
                resolved += 1
        if resolved:
            log.debug(f"Resolved {resolved} relationship(s) targeting {entity_type.name}")
        return resolved

    def resolve_for_owner(
        self,
        entity_type: EntityType,
        lookup: LookupService | None,
        *,
        owners: Collection[int] | None = None,
    ) -> None:
        """Resolve links owned by ``entity_type`` or raise ``RelationshipResolutionError``.

        ``owners`` narrows the check to the owners whose ``id()`` is listed.

        External-id lookups are cached per (target type, field) for the whole commit.
        A value looked up for an earlier owner type is therefore not found again after
        a record carrying it is inserted later in the same commit; link such owners
        with a ``RecordLink`` instead.
        """

        self._resolve(
            [
                relationship
                for relationship in self._relationships
                if relationship.owner_type == entity_type
                and not relationship.resolved
                and (owners is None or id(relationship.owner) in owners)
            ],
            lookup,
        )

    def resolve_detached(self, lookup: LookupService | None) -> None:
        """Resolve links owned by non-record owners such as auxiliary messages."""

        self._resolve(
            [
                relationship
                for relationship in self._relationships
                if relationship.owner_type is None and not relationship.resolved
            ],
            lookup,
        )

    def _resolve(self, relationships: list[Relationship], lookup: LookupService | None) -> None:
        if not relationships:
            return

        for relationship in relationships:
            target = relationship.target
            if isinstance(target, RecordTarget):
                identity = target.entity_type.identity_of(target.record)
                if identity is not None:
                    relationship.assign(identity)

        external = [
            (relationship, target)
            for relationship in relationships
            if isinstance(target := relationship.target, ExternalIdTarget)
        ]
        if not external:
            self._raise_unresolved(relationships)
            return
        if lookup is None:
            raise RelationshipResolutionError(
                [relationship for relationship, _ in external],
                reason="no lookup service configured",
            )

        missing: list[Relationship] = []
        for relationship, target in external:
            found = self._lookup(target.lookup_key, lookup)
            if target.value in found:
                relationship.assign(found[target.value])
            else:
                missing.append(relationship)
        if missing:
            raise RelationshipResolutionError(missing, reason="external identifier not found")
        self._raise_unresolved(relationships)

    @staticmethod
    def _raise_unresolved(relationships: list[Relationship]) -> None:
        unresolved = [relationship for relationship in relationships if not relationship.resolved]
        if unresolved:
            raise RelationshipResolutionError(
                unresolved, reason="target record has not been inserted yet"
            )

    def _lookup(
        self,
        key: tuple[EntityType, str],
        lookup: LookupService,
    ) -> dict[Hashable, object]:
        cached = self._lookup_cache.get(key)
        if cached is not None:
            return cached

        requesting: list[Relationship] = []
        values: set[Hashable] = set()
        for relationship in self._relationships:
            target = relationship.target
            if isinstance(target, ExternalIdTarget) and target.lookup_key == key:
                requesting.append(relationship)
                values.add(target.value)

        entity_type, id_field = key
        self.lookup_calls += 1
        log.debug(f"Looking up {len(values)} external id(s) for {entity_type.name}.{id_field}")
        try:
            found = dict(lookup.find_by_external_id(entity_type, id_field, values))
        except Exception as exc:
            raise RelationshipResolutionError(requesting, reason=f"lookup failed: {exc}") from exc
        self._lookup_cache[key] = found
        return found

    def _external_type(self, target_type: EntityType | type[Any]) -> EntityType:
        requested = EntityType.of(target_type)
        return self.registry.find_declared(requested) or requested


def _can_hold(owner: object, field_name: str) -> bool:
    """Whether a non-record owner accepts an identity in ``field_name``."""

    if isinstance(owner, MutableMapping):
        return True
    if not hasattr(owner, field_name):
        return False
    params = getattr(type(owner), "__dataclass_params__", None)
    return not (is_dataclass(owner) and getattr(params, "frozen", False))
