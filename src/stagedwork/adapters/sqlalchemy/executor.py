"""Bulk writes through an ORM session.

Each row is written inside its own nested transaction so one bad row is reported in
its ``RowResult`` instead of poisoning the batch; the batch itself runs in an outer
nested transaction that is rolled back when all-or-none execution sees a failure.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import inspect, update
from sqlalchemy.exc import SQLAlchemyError

from stagedwork.domain.model import EnforcementMode, OperationKind, RowError, RowResult

from .mapping import column_for, mapper_for

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.orm import Session

    from stagedwork.domain.model import EntityType, ExecutionOptions, FieldMask
    from stagedwork.domain.ports import AccessPolicy

log = getLogger(__name__)


class _RowNotFoundError(LookupError):
    pass


class SqlAlchemyBulkWriteExecutor:
    def __init__(self, session: Session, *, access_policy: AccessPolicy | None = None) -> None:
        self.session = session
        self.access_policy = access_policy

    @property
    def supports_upsert(self) -> bool:
        return True

    def execute(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        records: Sequence[object],
        field_mask: FieldMask | None = None,
        options: ExecutionOptions | None = None,
    ) -> list[RowResult]:
        if not self._allowed(entity_type, kind, options):
            error = RowError("insufficient access", code="INSUFFICIENT_ACCESS")
            return [RowResult.failed(record, error) for record in records]

        staged = (
            self._stage_sparse(records, field_mask)
            if kind is OperationKind.UPDATE and field_mask is not None
            else [None] * len(records)
        )
        all_or_none = options.all_or_none if options is not None else True
        batch = self.session.begin_nested()
        results = [
            self._write_row(entity_type, kind, record, values)
            for record, values in zip(records, staged, strict=True)
        ]
        if all_or_none and any(not result.success for result in results):
            batch.rollback()
            log.debug(f"Rolled back {kind} batch of {entity_type.name}: a row failed")
            skipped = RowError("not applied: another row of the batch failed", code="ALL_OR_NONE")
            return [
                result if not result.success else RowResult.failed(result.record, skipped)
                for result in results
            ]
        batch.commit()
        return results

    def _allowed(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        options: ExecutionOptions | None,
    ) -> bool:
        if options is None or options.mode is not EnforcementMode.USER:
            return True
        if self.access_policy is None:
            return True
        return self.access_policy.allows(entity_type, kind, options.access_level)

    def _stage_sparse(
        self,
        records: Sequence[object],
        field_mask: FieldMask,
    ) -> list[dict[str, object] | None]:
        """Capture masked values, then drop pending ORM changes on attached records.

        ``begin_nested`` flushes the session unconditionally, which would otherwise
        write fields outside the mask.
        """

        staged: list[dict[str, object] | None] = []
        for record in records:
            staged.append({name: getattr(record, name) for name in field_mask})
            self._expire_changes(record)
        return staged

    def _expire_changes(self, record: object, keys: Iterable[str] | None = None) -> None:
        if record not in self.session:
            return
        if keys is None:
            keys = [
                attribute.key
                for attribute in inspect(record).attrs
                if attribute.history.has_changes()
            ]
        if keys := list(keys):
            self.session.expire(record, keys)

    def _write_row(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        record: object,
        values: dict[str, object] | None,
    ) -> RowResult:
        try:
            with self.session.begin_nested():
                identity = self._apply(entity_type, kind, record, values)
        except _RowNotFoundError:
            return RowResult.failed(record, RowError("record not found", code="NOT_FOUND"))
        except SQLAlchemyError as exc:
            cause = getattr(exc, "orig", None) or exc
            return RowResult.failed(record, RowError(str(cause), code=type(exc).__name__))
        return RowResult.ok(record, identity)

    def _apply(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        record: object,
        values: dict[str, object] | None,
    ) -> object:
        match kind:
            case OperationKind.INSERT:
                return self._insert(entity_type, record)
            case OperationKind.UPDATE if values is not None:
                return self._sparse_update(entity_type, record, values)
            case OperationKind.UPDATE:
                return self._full_update(entity_type, record)
            case OperationKind.UPSERT:
                if entity_type.has_identity(record):
                    return self._full_update(entity_type, record)
                return self._insert(entity_type, record)
            case OperationKind.DELETE:
                return self._delete(entity_type, record, soft=entity_type.soft_delete_field)
            case OperationKind.PERMANENT_DELETE:
                return self._delete(entity_type, record, soft=None)

    def _insert(self, entity_type: EntityType, record: object) -> object:
        self.session.add(record)
        self.session.flush()
        return entity_type.identity_of(record)

    def _existing(self, entity_type: EntityType, record: object) -> object:
        identity = entity_type.identity_of(record)
        existing = self.session.get(entity_type.record_class, identity)
        if existing is None:
            raise _RowNotFoundError(identity)
        return existing

    def _full_update(self, entity_type: EntityType, record: object) -> object:
        self._existing(entity_type, record)
        self.session.merge(record)
        self.session.flush()
        return entity_type.identity_of(record)

    def _sparse_update(
        self,
        entity_type: EntityType,
        record: object,
        values: dict[str, object],
    ) -> object:
        identity = entity_type.identity_of(record)
        mapper = mapper_for(entity_type)
        stmt = (
            update(mapper.local_table)
            .where(column_for(entity_type, entity_type.id_field) == identity)
            .values({column_for(entity_type, name): value for name, value in values.items()})
        )
        with self.session.no_autoflush:
            result = self.session.execute(stmt)
        if result.rowcount == 0:  # pyright: ignore[reportAttributeAccessIssue]
            raise _RowNotFoundError(identity)

        self._expire_changes(record, values)
        return identity

    def _delete(self, entity_type: EntityType, record: object, *, soft: str | None) -> object:
        existing = self._existing(entity_type, record)
        if soft is not None:
            setattr(existing, soft, True)
        else:
            self.session.delete(existing)
        self.session.flush()
        return entity_type.identity_of(record)


if TYPE_CHECKING:
    from typing import cast

    from stagedwork.domain.ports import BulkWriteExecutor

    _executor_check: BulkWriteExecutor = SqlAlchemyBulkWriteExecutor(cast("Session", object()))
