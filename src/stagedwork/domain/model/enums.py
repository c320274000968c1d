"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class OperationKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    PERMANENT_DELETE = "permanent_delete"
    UPSERT = "upsert"

    @property
    def requires_identity(self) -> bool:
        return self in {
            OperationKind.UPDATE,
            OperationKind.DELETE,
            OperationKind.PERMANENT_DELETE,
        }


class EventPhase(StrEnum):
    """Lifecycle point at which a deferred event is published."""

    BEFORE_TRANSACTION = "before_transaction"
    AFTER_SUCCESS = "after_success"
    AFTER_FAILURE = "after_failure"


class DeleteOrder(StrEnum):
    """Direction in which delete batches walk the declared entity types."""

    DECLARED = "declared"
    REVERSE = "reverse"


class EnforcementMode(StrEnum):
    SYSTEM = "system"
    USER = "user"


class AccessLevel(StrEnum):
    """Strictness of user-mode permission enforcement."""

    USER_MODE = "user_mode"
    STRICT = "strict"


class CommitState(StrEnum):
    PENDING = "pending"
    COMMIT_STARTING = "commit_starting"
    PUBLISH_BEFORE_EVENTS = "publish_before_events"
    DML = "dml"
    DO_WORK = "do_work"
    COMMIT_FINISHING = "commit_finishing"
    PUBLISH_AFTER_EVENTS = "publish_after_events"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {CommitState.COMMITTED, CommitState.FAILED}
