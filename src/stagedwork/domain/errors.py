"""Error kinds raised or collected by the coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stagedwork.domain.model import describe_record

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stagedwork.domain.model import EntityType, EventPhase, OperationKind, RowResult
    from stagedwork.domain.relationships import Relationship
    from stagedwork.domain.results import CommitResult


class UnitOfWorkError(RuntimeError):
    """Root of every error the coordinator raises or records."""


class ConfigurationError(UnitOfWorkError):
    """Raised when the coordinator is set up or used incorrectly."""


class InvalidRegistrationError(ConfigurationError):
    """Raised when a record cannot be registered for the requested operation."""


class AlreadyCommittedError(ConfigurationError):
    """Raised when a coordinator is used after its one commit."""


class RelationshipResolutionError(UnitOfWorkError):
    """Raised when relationships remain unresolved before their owner is written."""

    def __init__(self, relationships: Sequence[Relationship], *, reason: str | None = None) -> None:
        self.relationships = tuple(relationships)
        self.reason = reason
        details = "; ".join(str(relationship) for relationship in self.relationships)
        message = f"Unresolved relationships: {details}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class RowLevelWriteError(UnitOfWorkError):
    """Aggregates the failed rows of one batch."""

    def __init__(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        failures: Sequence[RowResult],
    ) -> None:
        self.entity_type = entity_type
        self.kind = kind
        self.failures = tuple(failures)
        rows = "; ".join(
            f"{describe_record(entity_type, failure.record)}: "
            + ", ".join(str(error) for error in failure.errors)
            for failure in self.failures
        )
        super().__init__(
            f"{len(self.failures)} {entity_type.name} row(s) failed during {kind}: {rows}"
        )


class BatchWriteError(UnitOfWorkError):
    """Raised when a whole batch fails outside of per-row reporting."""

    def __init__(self, entity_type: EntityType, kind: OperationKind, message: str) -> None:
        self.entity_type = entity_type
        self.kind = kind
        super().__init__(f"{kind} batch for {entity_type.name} failed: {message}")


class SavepointError(UnitOfWorkError):
    """Raised when the storage savepoint cannot be opened, released or rolled back."""


class DispatchError(UnitOfWorkError):
    """Raised when an event or message could not be handed to its transport."""

    def __init__(self, payload: object, *, phase: EventPhase | None = None) -> None:
        self.payload = payload
        self.phase = phase
        target = f"{phase} event" if phase is not None else "message"
        super().__init__(f"Failed to dispatch {target}: {payload!r}")


class CustomWorkError(UnitOfWorkError):
    """Raised when a registered work unit fails."""

    def __init__(self, work: object, position: int) -> None:
        self.work = work
        self.position = position
        super().__init__(f"Work unit #{position} ({work!r}) failed")


class HookError(UnitOfWorkError):
    """Raised when a lifecycle hook fails."""

    def __init__(self, hook: str) -> None:
        self.hook = hook
        super().__init__(f"Commit hook {hook!r} failed")


class CommitFailedError(UnitOfWorkError):
    """Raised by ``CommitResult.raise_for_failure`` for unsuccessful commits."""

    def __init__(self, result: CommitResult) -> None:
        self.result = result
        causes = "; ".join(str(error) for error in result.errors) or "no recorded cause"
        super().__init__(f"Commit failed: {causes}")
