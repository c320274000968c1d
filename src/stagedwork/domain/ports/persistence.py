"""Ports for the storage layer behind the coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Hashable, Sequence

    from stagedwork.domain.model import (
        AccessLevel,
        EntityType,
        ExecutionOptions,
        FieldMask,
        OperationKind,
        RowResult,
    )


@runtime_checkable
class BulkWriteExecutor(Protocol):
    """Executes one kind of write for a batch of records of one entity type."""

    @property
    def supports_upsert(self) -> bool: ...

    def execute(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        records: Sequence[object],
        field_mask: FieldMask | None = None,
        options: ExecutionOptions | None = None,
    ) -> list[RowResult]:
        """Write ``records`` and return one result per record, in input order.

        Row-level failures are reported in the results, never raised.
        """
        ...


@runtime_checkable
class LookupService(Protocol):
    """Resolves external identifiers to assigned identities."""

    def find_by_external_id(
        self,
        entity_type: EntityType,
        field: str,
        values: set[Hashable],
    ) -> dict[Hashable, object]:
        """Return ``value -> identity`` for every value found; misses are omitted."""
        ...


@runtime_checkable
class SavepointProvider[THandle](Protocol):
    """Rollback points inside the ambient storage transaction."""

    def open(self) -> THandle: ...

    def rollback(self, handle: THandle) -> None: ...

    def release(self, handle: THandle) -> None: ...


@runtime_checkable
class AccessPolicy(Protocol):
    """Decides whether the acting user may perform a write (user enforcement only)."""

    def allows(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        access_level: AccessLevel | None,
    ) -> bool: ...
