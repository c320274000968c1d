"""In-memory storage: bulk writes, external-id lookups and savepoints over dict tables.

Rows are stored as shallow copies of the records, keyed by the identity the store
assigned on insert, so later in-memory mutations of a record do not leak into storage
until it is written again.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from stagedwork.domain.errors import SavepointError
from stagedwork.domain.model import EnforcementMode, OperationKind, RowError, RowResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stagedwork.domain.model import EntityType, ExecutionOptions, FieldMask
    from stagedwork.domain.ports import AccessPolicy

log = getLogger(__name__)

type RowPredicate = Callable[[object], bool]
type _Tables = dict[str, dict[object, object]]


@dataclass(frozen=True, slots=True)
class _Rejection:
    entity_name: str
    kind: OperationKind
    predicate: RowPredicate
    message: str


@dataclass(frozen=True, slots=True)
class _Snapshot:
    tables: _Tables
    next_ids: dict[str, int]


class InMemoryStorage:
    """Dict-backed implementation of the executor, lookup and savepoint ports.

    Identities are per-type auto-incrementing integers. ``reject`` makes matching
    rows fail, which is how callers exercise row-level failure handling.
    """

    def __init__(
        self,
        *,
        supports_upsert: bool = True,
        access_policy: AccessPolicy | None = None,
    ) -> None:
        self._supports_upsert = supports_upsert
        self.access_policy = access_policy
        self._tables: _Tables = {}
        self._next_ids: dict[str, int] = {}
        self._rejections: list[_Rejection] = []
        self._savepoints: list[_Snapshot] = []
        self.batches: list[tuple[str, OperationKind, int]] = []
        self.lookups: list[tuple[str, str, frozenset[Hashable]]] = []

    # Test helpers -----------------------------------------------------------

    def reject(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        predicate: RowPredicate | None = None,
        message: str = "rejected by storage",
    ) -> None:
        """Fail every future ``kind`` write of ``entity_type`` rows matching ``predicate``."""

        self._rejections.append(
            _Rejection(
                entity_name=entity_type.name,
                kind=kind,
                predicate=predicate or (lambda _record: True),
                message=message,
            )
        )

    def seed(self, entity_type: EntityType, record: object) -> object:
        """Store ``record`` directly, assigning it an identity if it has none."""

        identity = entity_type.identity_of(record)
        if identity is None:
            identity = self._next_identity(entity_type)
            entity_type.assign_identity(record, identity)
        self._table(entity_type)[identity] = copy.copy(record)
        return identity

    def rows(self, entity_type: EntityType) -> list[object]:
        return list(self._table(entity_type).values())

    def get(self, entity_type: EntityType, identity: object) -> object | None:
        return self._table(entity_type).get(identity)

    def __contains__(self, item: tuple[EntityType, object]) -> bool:
        entity_type, identity = item
        return identity in self._table(entity_type)

    @property
    def write_count(self) -> int:
        return len(self.batches)

    # BulkWriteExecutor ------------------------------------------------------

    @property
    def supports_upsert(self) -> bool:
        return self._supports_upsert

    def execute(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        records: Sequence[object],
        field_mask: FieldMask | None = None,
        options: ExecutionOptions | None = None,
    ) -> list[RowResult]:
        self.batches.append((entity_type.name, kind, len(records)))
        if options is not None and not self._allowed(entity_type, kind, options):
            error = RowError("insufficient access", code="INSUFFICIENT_ACCESS")
            return [RowResult.failed(record, error) for record in records]

        before = self._snapshot()
        results = [self._write_row(entity_type, kind, record, field_mask) for record in records]
        all_or_none = options.all_or_none if options is not None else True
        if all_or_none and any(not result.success for result in results):
            self._restore(before)
            skipped = RowError("not applied: another row of the batch failed", code="ALL_OR_NONE")
            results = [
                result if not result.success else RowResult.failed(result.record, skipped)
                for result in results
            ]
        return results

    def _allowed(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        options: ExecutionOptions,
    ) -> bool:
        if options.mode is not EnforcementMode.USER or self.access_policy is None:
            return True
        return self.access_policy.allows(entity_type, kind, options.access_level)

    def _write_row(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        record: object,
        field_mask: FieldMask | None,
    ) -> RowResult:
        for rejection in self._rejections:
            if (
                rejection.entity_name == entity_type.name
                and rejection.kind is kind
                and rejection.predicate(record)
            ):
                return RowResult.failed(record, RowError(rejection.message, code="REJECTED"))

        match kind:
            case OperationKind.INSERT:
                return self._insert(entity_type, record)
            case OperationKind.UPDATE:
                return self._update(entity_type, record, field_mask)
            case OperationKind.UPSERT:
                if entity_type.has_identity(record):
                    return self._update(entity_type, record, None)
                return self._insert(entity_type, record)
            case OperationKind.DELETE:
                return self._delete(entity_type, record, soft=entity_type.soft_delete_field)
            case OperationKind.PERMANENT_DELETE:
                return self._delete(entity_type, record, soft=None)

    def _insert(self, entity_type: EntityType, record: object) -> RowResult:
        identity = self._next_identity(entity_type)
        row = copy.copy(record)
        entity_type.assign_identity(row, identity)
        self._table(entity_type)[identity] = row
        return RowResult.ok(record, identity)

    def _update(
        self,
        entity_type: EntityType,
        record: object,
        field_mask: FieldMask | None,
    ) -> RowResult:
        identity = entity_type.identity_of(record)
        table = self._table(entity_type)
        if identity not in table:
            return RowResult.failed(record, RowError("record not found", code="NOT_FOUND"))
        if field_mask is None:
            table[identity] = copy.copy(record)
        else:
            row = table[identity]
            for name in field_mask:
                setattr(row, name, getattr(record, name))
        return RowResult.ok(record, identity)

    def _delete(self, entity_type: EntityType, record: object, *, soft: str | None) -> RowResult:
        identity = entity_type.identity_of(record)
        table = self._table(entity_type)
        if identity not in table:
            return RowResult.failed(record, RowError("record not found", code="NOT_FOUND"))
        if soft is not None:
            setattr(table[identity], soft, True)
        else:
            del table[identity]
        return RowResult.ok(record, identity)

    # LookupService ----------------------------------------------------------

    def find_by_external_id(
        self,
        entity_type: EntityType,
        field: str,
        values: set[Hashable],
    ) -> dict[Hashable, object]:
        self.lookups.append((entity_type.name, field, frozenset(values)))
        found: dict[Hashable, object] = {}
        for identity, row in self._table(entity_type).items():
            value = getattr(row, field, None)
            if value is not None and value in values:
                found[value] = identity
        return found

    # SavepointProvider ------------------------------------------------------

    def open(self) -> int:
        self._savepoints.append(self._snapshot())
        log.debug(f"Opened in-memory savepoint #{len(self._savepoints)}")
        return len(self._savepoints)

    def rollback(self, handle: int) -> None:
        snapshot = self._pop_to(handle)
        self._restore(snapshot)
        log.debug(f"Rolled back in-memory savepoint #{handle}")

    def release(self, handle: int) -> None:
        self._pop_to(handle)

    @property
    def open_savepoints(self) -> int:
        return len(self._savepoints)

    def _pop_to(self, handle: int) -> _Snapshot:
        if not 1 <= handle <= len(self._savepoints):
            raise SavepointError(f"Unknown savepoint #{handle}")
        snapshot = self._savepoints[handle - 1]
        del self._savepoints[handle - 1 :]
        return snapshot

    # Internals --------------------------------------------------------------

    def _table(self, entity_type: EntityType) -> dict[object, object]:
        return self._tables.setdefault(entity_type.name, {})

    def _next_identity(self, entity_type: EntityType) -> int:
        identity = self._next_ids.get(entity_type.name, 0) + 1
        self._next_ids[entity_type.name] = identity
        return identity

    def _snapshot(self) -> _Snapshot:
        return _Snapshot(
            tables={
                name: {identity: copy.copy(row) for identity, row in table.items()}
                for name, table in self._tables.items()
            },
            next_ids=dict(self._next_ids),
        )

    def _restore(self, snapshot: _Snapshot) -> None:
        self._tables = {
            name: {identity: copy.copy(row) for identity, row in table.items()}
            for name, table in snapshot.tables.items()
        }
        self._next_ids = dict(snapshot.next_ids)


if TYPE_CHECKING:
    from stagedwork.domain.ports import BulkWriteExecutor, LookupService, SavepointProvider

    _executor_check: BulkWriteExecutor = InMemoryStorage()
    _lookup_check: LookupService = InMemoryStorage()
    _savepoint_check: SavepointProvider[int] = InMemoryStorage()
