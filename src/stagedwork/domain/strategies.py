"""Execution policies applied uniformly to every batch of a commit."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from stagedwork.domain.errors import BatchWriteError
from stagedwork.domain.model import (
    AccessLevel,
    EnforcementMode,
    ExecutionOptions,
    OperationKind,
    RowResult,
    format_mask,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stagedwork.config.coordinator import CoordinatorConfig
    from stagedwork.domain.model import EntityType, FieldMask
    from stagedwork.domain.ports import BulkWriteExecutor

log = getLogger(__name__)


@runtime_checkable
class WriteStrategy(Protocol):
    """Writes one entity type's batch and reports one result per record."""

    @property
    def supports_upsert(self) -> bool: ...

    @property
    def options(self) -> ExecutionOptions: ...

    def insert(self, entity_type: EntityType, records: Sequence[object]) -> list[RowResult]: ...

    def update(
        self,
        entity_type: EntityType,
        records: Sequence[object],
        field_mask: FieldMask | None = None,
    ) -> list[RowResult]: ...

    def delete(self, entity_type: EntityType, records: Sequence[object]) -> list[RowResult]: ...

    def permanently_delete(
        self, entity_type: EntityType, records: Sequence[object]
    ) -> list[RowResult]: ...

    def upsert(self, entity_type: EntityType, records: Sequence[object]) -> list[RowResult]: ...


@dataclass(slots=True)
class _ExecutorStrategy(ABC):
    executor: BulkWriteExecutor

    @property
    @abstractmethod
    def options(self) -> ExecutionOptions: ...

    @property
    def supports_upsert(self) -> bool:
        return bool(self.executor.supports_upsert)

    def insert(self, entity_type: EntityType, records: Sequence[object]) -> list[RowResult]:
        return self._execute(entity_type, OperationKind.INSERT, records)

    def update(
        self,
        entity_type: EntityType,
        records: Sequence[object],
        field_mask: FieldMask | None = None,
    ) -> list[RowResult]:
        return self._execute(entity_type, OperationKind.UPDATE, records, field_mask)

    def delete(self, entity_type: EntityType, records: Sequence[object]) -> list[RowResult]:
        return self._execute(entity_type, OperationKind.DELETE, records)

    def permanently_delete(
        self, entity_type: EntityType, records: Sequence[object]
    ) -> list[RowResult]:
        return self._execute(entity_type, OperationKind.PERMANENT_DELETE, records)

    def upsert(self, entity_type: EntityType, records: Sequence[object]) -> list[RowResult]:
        if not self.supports_upsert:
            raise BatchWriteError(entity_type, OperationKind.UPSERT, "executor cannot upsert")
        return self._execute(entity_type, OperationKind.UPSERT, records)

    def _execute(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        records: Sequence[object],
        field_mask: FieldMask | None = None,
    ) -> list[RowResult]:
        if not records:
            return []
        options = self.options
        log.debug(
            f"Executing {kind} of {len(records)} {entity_type.name} row(s) "
            f"[fields: {format_mask(field_mask)}] "
            f"as {options.mode} (all_or_none={options.all_or_none})"
        )
        results = list(
            self.executor.execute(entity_type, kind, records, field_mask, options)
        )
        if len(results) != len(records):
            raise BatchWriteError(
                entity_type,
                kind,
                f"executor returned {len(results)} result(s) for {len(records)} record(s)",
            )
        return results


@dataclass(slots=True)
class SystemModeWriteStrategy(_ExecutorStrategy):
    """Writes as the system: field and object permissions are not checked."""

    all_or_none: bool = True

    @property
    def options(self) -> ExecutionOptions:
        return ExecutionOptions(mode=EnforcementMode.SYSTEM, all_or_none=self.all_or_none)


@dataclass(slots=True)
class UserModeWriteStrategy(_ExecutorStrategy):
    """Writes with the acting user's effective permissions."""

    access_level: AccessLevel = AccessLevel.USER_MODE
    all_or_none: bool = True

    @property
    def options(self) -> ExecutionOptions:
        return ExecutionOptions(
            mode=EnforcementMode.USER,
            access_level=self.access_level,
            all_or_none=self.all_or_none,
        )


def build_write_strategy(
    executor: BulkWriteExecutor,
    config: CoordinatorConfig,
) -> WriteStrategy:
    """Pick the strategy matching ``config.enforcement``."""

    if config.enforcement is EnforcementMode.USER:
        return UserModeWriteStrategy(
            executor,
            access_level=config.access_level,
            all_or_none=config.all_or_none,
        )
    return SystemModeWriteStrategy(executor, all_or_none=config.all_or_none)


if TYPE_CHECKING:
    from typing import cast

    _executor_stub = cast("BulkWriteExecutor", object())
    _system_check: WriteStrategy = SystemModeWriteStrategy(_executor_stub)
    _user_check: WriteStrategy = UserModeWriteStrategy(_executor_stub)
