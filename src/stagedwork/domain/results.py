"""Outcome of one commit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from stagedwork.domain.errors import CommitFailedError

if TYPE_CHECKING:
    from stagedwork.domain.errors import UnitOfWorkError
    from stagedwork.domain.model import CommitState


@dataclass(frozen=True, slots=True)
class CommitResult:
    """Overall success plus every failure observed, in the order it happened.

    ``succeeded`` is decided before the terminal event dispatch; failures recorded
    after that point appear in ``errors`` without changing it. ``dml_applied`` is
    true when the DML phase finished and its savepoint was released, which is the
    signal for the caller to let the ambient storage transaction commit.
    """

    succeeded: bool
    state: CommitState
    dml_applied: bool = False
    errors: tuple[UnitOfWorkError, ...] = ()

    @property
    def failed(self) -> bool:
        return not self.succeeded

    def errors_of[TError: UnitOfWorkError](self, kind: type[TError]) -> tuple[TError, ...]:
        return tuple(error for error in self.errors if isinstance(error, kind))

    def raise_for_failure(self) -> CommitResult:
        if not self.succeeded:
            raise CommitFailedError(self)
        return self
