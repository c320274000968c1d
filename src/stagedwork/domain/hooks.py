"""Lifecycle callbacks invoked by the coordinator.

Every callback is optional and fires unconditionally at its lifecycle point, even
when the matching queue or batch list is empty. The batch callbacks only fire for
non-empty batches.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, fields

from stagedwork.domain.model import EntityType, OperationKind, RowResult

type Hook = Callable[[], object]
type TypeHook = Callable[[EntityType], object]
type BatchHook = Callable[[EntityType, OperationKind, Sequence[object]], object]
type BatchResultHook = Callable[[EntityType, OperationKind, Sequence[RowResult]], object]
type FinishedHook = Callable[[bool], object]


@dataclass(frozen=True, slots=True, kw_only=True)
class CommitHooks:
    on_register_type: TypeHook | None = None
    on_commit_work_starting: Hook | None = None
    on_publish_before_events_starting: Hook | None = None
    on_publish_before_events_finished: Hook | None = None
    on_dml_starting: Hook | None = None
    on_batch_executing: BatchHook | None = None
    on_batch_executed: BatchResultHook | None = None
    on_dml_finished: Hook | None = None
    on_do_work_starting: Hook | None = None
    on_do_work_finished: Hook | None = None
    on_commit_work_finishing: Hook | None = None
    on_publish_after_success_events_starting: Hook | None = None
    on_publish_after_success_events_finished: Hook | None = None
    on_publish_after_failure_events_starting: Hook | None = None
    on_publish_after_failure_events_finished: Hook | None = None
    on_commit_work_finished: FinishedHook | None = None

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(hook.name for hook in fields(cls))

    def merged(self, other: CommitHooks) -> CommitHooks:
        """Return hooks running ``self`` first and then ``other`` at every lifecycle point."""

        values: dict[str, object] = {}
        for name in self.names():
            first = getattr(self, name)
            second = getattr(other, name)
            if first is None or second is None:
                values[name] = first or second
                continue
            values[name] = _chain(first, second)
        return CommitHooks(**values)  # pyright: ignore[reportArgumentType]


def _chain(
    first: Callable[..., object],
    second: Callable[..., object],
) -> Callable[..., object]:
    def chained(*args: object) -> None:
        first(*args)
        second(*args)

    return chained
