"""The unit of work: registration API and the commit protocol.

Commit runs these steps, in order, exactly once per coordinator:

1. commit starting (hook only)
2. publish before-transaction events; a failure here prevents any write
3. DML under one savepoint: for each declared type, resolve relationships, then
   insert, upsert, update, delete and permanently delete; any failure rolls back
   to the savepoint
4. work units, then auxiliary messages (only after successful DML; never rolled back)
5. commit finishing (hook only)
6. after-success or after-failure events; failures are recorded but do not change
   the outcome decided before this step
7. commit finished (hook only)

Steps 3 and 4 are skipped once an earlier step failed; steps 5 to 7 always run.
"""

from __future__ import annotations

from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING, Any

from stagedwork.domain.effects import DeferredEffects
from stagedwork.domain.errors import (
    AlreadyCommittedError,
    BatchWriteError,
    ConfigurationError,
    CustomWorkError,
    DispatchError,
    HookError,
    RowLevelWriteError,
    SavepointError,
    UnitOfWorkError,
)
from stagedwork.domain.hooks import CommitHooks
from stagedwork.domain.model import CommitState, DeleteOrder, EventPhase, OperationKind
from stagedwork.domain.registry import EntityBatchRegistry
from stagedwork.domain.relationships import RelationshipResolver
from stagedwork.domain.results import CommitResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from stagedwork.domain.model import DeferredEvent, EntityType, RowResult
    from stagedwork.domain.ports import (
        EventTransport,
        LookupService,
        MessageTransport,
        SavepointProvider,
        WorkUnit,
    )
    from stagedwork.domain.relationships import Link, Relationship
    from stagedwork.domain.strategies import WriteStrategy

log = getLogger(__name__)

_DELETE_KINDS = (OperationKind.DELETE, OperationKind.PERMANENT_DELETE)


class UnitOfWorkCoordinator:
    """Collects writes and side effects for one logical transaction and commits them once."""

    def __init__(  # noqa: PLR0913
        self,
        entity_types: Iterable[EntityType | type[Any]],
        *,
        strategy: WriteStrategy,
        savepoints: SavepointProvider[Any],
        lookup: LookupService | None = None,
        event_transport: EventTransport | None = None,
        message_transport: MessageTransport | None = None,
        hooks: CommitHooks | None = None,
        delete_order: DeleteOrder = DeleteOrder.DECLARED,
    ) -> None:
        self.registry = EntityBatchRegistry(entity_types)
        self.resolver = RelationshipResolver(self.registry)
        self.effects = DeferredEffects()
        self.strategy = strategy
        self.savepoints = savepoints
        self.lookup = lookup
        self.event_transport = event_transport
        self.message_transport = message_transport
        self.hooks = hooks or CommitHooks()
        self.delete_order = delete_order

        self._state = CommitState.PENDING
        self._errors: list[UnitOfWorkError] = []
        self._result: CommitResult | None = None

        for entity_type in self.registry.entity_types:
            self._invoke_hook("on_register_type", entity_type)

    # Inspection -------------------------------------------------------------

    @property
    def state(self) -> CommitState:
        return self._state

    @property
    def result(self) -> CommitResult | None:
        return self._result

    @property
    def entity_types(self) -> tuple[EntityType, ...]:
        return self.registry.entity_types

    def get_registered(
        self,
        entity_type: EntityType | type[Any],
        kind: OperationKind,
    ) -> tuple[object, ...]:
        return self.registry.get_registered(entity_type, kind)

    # Registration -----------------------------------------------------------

    def register_new(
        self,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
        links: Sequence[Link] = (),
    ) -> None:
        self._register(OperationKind.INSERT, record, entity_type=entity_type, links=links)

    def register_dirty(
        self,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
        fields: Iterable[str] | None = None,
        links: Sequence[Link] = (),
    ) -> None:
        """Register an update; ``fields`` makes it sparse (only those fields are written)."""

        self._register(
            OperationKind.UPDATE,
            record,
            entity_type=entity_type,
            fields=fields,
            links=links,
        )

    def register_deleted(
        self,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
    ) -> None:
        self._register(OperationKind.DELETE, record, entity_type=entity_type)

    def register_permanently_deleted(
        self,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
    ) -> None:
        self._register(OperationKind.PERMANENT_DELETE, record, entity_type=entity_type)

    def register_upsert(
        self,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
        links: Sequence[Link] = (),
    ) -> None:
        self._register(OperationKind.UPSERT, record, entity_type=entity_type, links=links)

    def register_all(
        self,
        kind: OperationKind,
        records: Iterable[object],
        *,
        entity_type: EntityType | type[Any] | None = None,
    ) -> None:
        """Register several records for ``kind``; stops at the first invalid record."""

        for record in records:
            self._register(kind, record, entity_type=entity_type)

    def register_relationship(self, owner: object, link: Link) -> Relationship:
        self._guard_registration()
        relationship = self.resolver.add(owner, link)
        self.registry.include_fields(owner, (link.field,))
        return relationship

    def publish_before_transaction(self, payload: object) -> DeferredEvent:
        self._require_event_transport()
        return self.effects.publish_before_transaction(payload)

    def publish_after_success(self, payload: object) -> DeferredEvent:
        self._require_event_transport()
        return self.effects.publish_after_success(payload)

    def publish_after_failure(self, payload: object) -> DeferredEvent:
        self._require_event_transport()
        return self.effects.publish_after_failure(payload)

    def register_message(self, message: object, *, links: Sequence[Link] = ()) -> None:
        """Queue ``message`` for sending after the work units; ``links`` fill it with ids."""

        self._guard_registration()
        if self.message_transport is None:
            raise ConfigurationError("No message transport configured for this unit of work")
        relationships = [self.resolver.build(message, link, detached=True) for link in links]
        for relationship in relationships:
            self.resolver.store(relationship)
        self.effects.register_message(message)

    def register_work(self, work: WorkUnit | Callable[[], object]) -> WorkUnit:
        self._guard_registration()
        return self.effects.register_work(work)

    def _register(
        self,
        kind: OperationKind,
        record: object,
        *,
        entity_type: EntityType | type[Any] | None = None,
        fields: Iterable[str] | None = None,
        links: Sequence[Link] = (),
    ) -> None:
        self._guard_registration()
        if links and kind in _DELETE_KINDS:
            raise ConfigurationError(f"Relationships cannot be registered for {kind}")

        relationships = [self.resolver.build(record, link) for link in links]
        mask = None if fields is None else [*fields, *(link.field for link in links)]
        self.registry.register(kind, record, entity_type=entity_type, fields=mask)
        for relationship in relationships:
            self.resolver.store(relationship)
        pending_fields = [relationship.field for relationship in self.resolver.pending_for(record)]
        if pending_fields:
            self.registry.include_fields(record, pending_fields)

    def _guard_registration(self) -> None:
        if self._state.is_terminal:
            raise AlreadyCommittedError("This unit of work has already been committed")
        if self._state is not CommitState.PENDING:
            raise ConfigurationError("Cannot register work while the commit is in progress")

    def _require_event_transport(self) -> None:
        self._guard_registration()
        if self.event_transport is None:
            raise ConfigurationError("No event transport configured for this unit of work")

    # Commit -----------------------------------------------------------------

    def commit(self) -> CommitResult:
        """Run the commit protocol once and return its outcome."""

        if self._state is not CommitState.PENDING:
            raise AlreadyCommittedError("This unit of work has already been committed")

        log.info(
            f"Committing unit of work: {len(self.registry)} pending operation(s) "
            f"across {len(self.registry.entity_types)} entity type(s)"
        )
        healthy = self._commit_starting()
        healthy = healthy and self._publish_before_events()
        dml_applied = healthy and self._run_dml()
        healthy = dml_applied and self._do_work()
        healthy = self._commit_finishing() and healthy

        succeeded = healthy
        self._publish_after_events(succeeded=succeeded)
        self._state = CommitState.COMMITTED if succeeded else CommitState.FAILED
        self._invoke_terminal_hook("on_commit_work_finished", succeeded)

        self._result = CommitResult(
            succeeded=succeeded,
            state=self._state,
            dml_applied=dml_applied,
            errors=tuple(self._errors),
        )
        if succeeded:
            log.info("Unit of work committed")
        else:
            log.error(f"Unit of work failed with {len(self._errors)} error(s)")
        return self._result

    def _commit_starting(self) -> bool:
        self._enter(CommitState.COMMIT_STARTING)
        return self._run_guarded(partial(self._invoke_hook, "on_commit_work_starting"))

    def _publish_before_events(self) -> bool:
        self._enter(CommitState.PUBLISH_BEFORE_EVENTS)

        def publish() -> None:
            self._invoke_hook("on_publish_before_events_starting")
            for event in self.effects.drain_events(EventPhase.BEFORE_TRANSACTION):
                self._dispatch_event(event)
            self._invoke_hook("on_publish_before_events_finished")

        return self._run_guarded(publish)

    def _run_dml(self) -> bool:
        self._enter(CommitState.DML)
        try:
            handle = self.savepoints.open()
        except Exception as exc:  # noqa: BLE001
            self._record_cause(SavepointError(f"Could not open savepoint: {exc}"), exc)
            return False

        try:
            self._invoke_hook("on_dml_starting")
            self._execute_batches()
            self._invoke_hook("on_dml_finished")
        except UnitOfWorkError as error:
            self._record(error)
            self._rollback(handle)
            return False
        except Exception as exc:  # noqa: BLE001
            self._record_cause(UnitOfWorkError(f"Unexpected failure during DML: {exc}"), exc)
            self._rollback(handle)
            return False

        try:
            self.savepoints.release(handle)
        except Exception as exc:  # noqa: BLE001
            self._record_cause(SavepointError(f"Could not release savepoint: {exc}"), exc)
            self._rollback(handle)
            return False
        return True

    def _do_work(self) -> bool:
        self._enter(CommitState.DO_WORK)

        def work() -> None:
            self._invoke_hook("on_do_work_starting")
            for position, unit in enumerate(self.effects.work, start=1):
                try:
                    unit.perform()
                except Exception as exc:
                    raise CustomWorkError(unit, position) from exc
            self._flush_messages()
            self._invoke_hook("on_do_work_finished")

        return self._run_guarded(work)

    def _commit_finishing(self) -> bool:
        self._enter(CommitState.COMMIT_FINISHING)
        return self._run_guarded(partial(self._invoke_hook, "on_commit_work_finishing"))

    def _publish_after_events(self, *, succeeded: bool) -> None:
        self._enter(CommitState.PUBLISH_AFTER_EVENTS)
        if succeeded:
            phase, skipped, prefix = (
                EventPhase.AFTER_SUCCESS,
                EventPhase.AFTER_FAILURE,
                "on_publish_after_success_events",
            )
        else:
            phase, skipped, prefix = (
                EventPhase.AFTER_FAILURE,
                EventPhase.AFTER_SUCCESS,
                "on_publish_after_failure_events",
            )

        self._invoke_terminal_hook(f"{prefix}_starting")
        for event in self.effects.drain_events(phase):
            try:
                self._dispatch_event(event)
            except DispatchError as error:
                self._record(error, terminal=True)
        self._invoke_terminal_hook(f"{prefix}_finished")
        self.effects.discard(skipped)

    # DML --------------------------------------------------------------------

    def _execute_batches(self) -> None:
        entity_types = self.registry.entity_types
        deletes_inline = self.delete_order is DeleteOrder.DECLARED

        for entity_type in entity_types:
            self._write_batch(entity_type, OperationKind.INSERT)
            self.resolver.resolve_targets_of(entity_type)
            self._write_upserts(entity_type)
            self.resolver.resolve_targets_of(entity_type)
            self._write_updates(entity_type)
            self.resolver.resolve_for_owner(entity_type, self.lookup)
            if deletes_inline:
                self._write_deletes(entity_type)

        if not deletes_inline:
            for entity_type in reversed(entity_types):
                self._write_deletes(entity_type)

    def _write_batch(self, entity_type: EntityType, kind: OperationKind) -> None:
        records = list(self.registry.get_registered(entity_type, kind))
        if not records:
            return
        self._resolve_owners(entity_type, records)
        run = self._strategy_call(kind)
        self._execute_batch(entity_type, kind, records, partial(run, entity_type, records))

    def _write_upserts(self, entity_type: EntityType) -> None:
        records = list(self.registry.get_registered(entity_type, OperationKind.UPSERT))
        if not records:
            return
        self._resolve_owners(entity_type, records)
        if self.strategy.supports_upsert:
            self._execute_batch(
                entity_type,
                OperationKind.UPSERT,
                records,
                partial(self.strategy.upsert, entity_type, records),
            )
            return

        new = [record for record in records if not entity_type.has_identity(record)]
        existing = [record for record in records if entity_type.has_identity(record)]
        log.debug(
            f"Splitting {len(records)} {entity_type.name} upsert(s) into "
            f"{len(new)} insert(s) and {len(existing)} update(s)"
        )
        if new:
            self._execute_batch(
                entity_type,
                OperationKind.INSERT,
                new,
                partial(self.strategy.insert, entity_type, new),
            )
        if existing:
            self._execute_batch(
                entity_type,
                OperationKind.UPDATE,
                existing,
                partial(self.strategy.update, entity_type, existing),
            )

    def _write_updates(self, entity_type: EntityType) -> None:
        for field_mask, records in self.registry.update_groups(entity_type):
            self._resolve_owners(entity_type, records)
            self._execute_batch(
                entity_type,
                OperationKind.UPDATE,
                records,
                partial(self.strategy.update, entity_type, records, field_mask),
            )

    def _write_deletes(self, entity_type: EntityType) -> None:
        for kind in _DELETE_KINDS:
            self._write_batch(entity_type, kind)

    def _resolve_owners(self, entity_type: EntityType, records: Sequence[object]) -> None:
        owners = {id(record) for record in records}
        self.resolver.resolve_for_owner(entity_type, self.lookup, owners=owners)

    def _strategy_call(
        self, kind: OperationKind
    ) -> Callable[[EntityType, Sequence[object]], list[RowResult]]:
        match kind:
            case OperationKind.INSERT:
                return self.strategy.insert
            case OperationKind.DELETE:
                return self.strategy.delete
            case OperationKind.PERMANENT_DELETE:
                return self.strategy.permanently_delete
            case OperationKind.UPDATE:
                return self.strategy.update
            case OperationKind.UPSERT:
                return self.strategy.upsert

    def _execute_batch(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        records: Sequence[object],
        run: Callable[[], list[RowResult]],
    ) -> list[RowResult]:
        self._invoke_hook("on_batch_executing", entity_type, kind, tuple(records))
        log.debug(f"Writing {len(records)} {entity_type.name} record(s): {kind}")
        try:
            results = run()
        except UnitOfWorkError:
            raise
        except Exception as exc:
            raise BatchWriteError(entity_type, kind, str(exc)) from exc

        for result in results:
            if (
                result.success
                and result.identity is not None
                and not entity_type.has_identity(result.record)
            ):
                entity_type.assign_identity(result.record, result.identity)

        failures = [result for result in results if not result.success]
        if failures:
            raise RowLevelWriteError(entity_type, kind, failures)
        self._invoke_hook("on_batch_executed", entity_type, kind, tuple(results))
        return results

    def _rollback(self, handle: object) -> None:
        log.warning("Rolling back DML to savepoint")
        try:
            self.savepoints.rollback(handle)
        except Exception as exc:  # noqa: BLE001
            self._record_cause(SavepointError(f"Could not roll back savepoint: {exc}"), exc)

    # Side effects -----------------------------------------------------------

    def _dispatch_event(self, event: DeferredEvent) -> None:
        if self.event_transport is None:
            raise DispatchError(event.payload, phase=event.phase)
        try:
            self.event_transport.publish(event.payload)
        except Exception as exc:
            raise DispatchError(event.payload, phase=event.phase) from exc

    def _flush_messages(self) -> None:
        if not self.effects.messages:
            return
        self.resolver.resolve_detached(self.lookup)
        for message in self.effects.drain_messages():
            if self.message_transport is None:
                raise DispatchError(message)
            try:
                self.message_transport.send(message)
            except Exception as exc:
                raise DispatchError(message) from exc

    # Plumbing ---------------------------------------------------------------

    def _enter(self, state: CommitState) -> None:
        log.debug(f"Commit state: {self._state} -> {state}")
        self._state = state

    def _run_guarded(self, step: Callable[[], object]) -> bool:
        try:
            step()
        except UnitOfWorkError as error:
            self._record(error)
            return False
        return True

    def _invoke_hook(self, name: str, *args: object) -> None:
        hook = getattr(self.hooks, name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as exc:
            raise HookError(name) from exc

    def _invoke_terminal_hook(self, name: str, *args: object) -> None:
        try:
            self._invoke_hook(name, *args)
        except HookError as error:
            self._record(error, terminal=True)

    def _record(self, error: UnitOfWorkError, *, terminal: bool = False) -> None:
        self._errors.append(error)
        if terminal:
            log.warning(f"{error} (outcome unchanged)")
        else:
            log.error(str(error))

    def _record_cause(self, error: UnitOfWorkError, cause: Exception) -> None:
        error.__cause__ = cause
        self._record(error)
