"""Deferred side effects: three event queues, auxiliary messages and work units."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from stagedwork.domain.model import DeferredEvent, EventPhase

if TYPE_CHECKING:
    from collections.abc import Iterator

    from stagedwork.domain.ports import WorkUnit


@dataclass(frozen=True, slots=True)
class CallableWork:
    """Adapt a zero-argument callable to the ``WorkUnit`` contract."""

    func: Callable[[], object]

    def perform(self) -> None:
        self.func()

    def __repr__(self) -> str:
        name = getattr(self.func, "__qualname__", None) or repr(self.func)
        return f"CallableWork({name})"


def _new_event_queues() -> dict[EventPhase, deque[DeferredEvent]]:
    return {phase: deque() for phase in EventPhase}


@dataclass(slots=True)
class DeferredEffects:
    """Queues drained at most once each, in enqueue order, during a commit."""

    _events: dict[EventPhase, deque[DeferredEvent]] = field(
        default_factory=_new_event_queues, repr=False
    )
    _messages: deque[object] = field(default_factory=deque[object], repr=False)
    _work: list[WorkUnit] = field(default_factory=list["WorkUnit"], repr=False)
    _sequence: int = 0

    def publish(self, phase: EventPhase, payload: object) -> DeferredEvent:
        self._sequence += 1
        event = DeferredEvent(phase=phase, payload=payload, sequence=self._sequence)
        self._events[phase].append(event)
        return event

    def publish_before_transaction(self, payload: object) -> DeferredEvent:
        return self.publish(EventPhase.BEFORE_TRANSACTION, payload)

    def publish_after_success(self, payload: object) -> DeferredEvent:
        return self.publish(EventPhase.AFTER_SUCCESS, payload)

    def publish_after_failure(self, payload: object) -> DeferredEvent:
        return self.publish(EventPhase.AFTER_FAILURE, payload)

    def register_message(self, message: object) -> None:
        self._messages.append(message)

    def register_work(self, work: WorkUnit | Callable[[], object]) -> WorkUnit:
        unit: WorkUnit
        if hasattr(work, "perform"):
            unit = work  # pyright: ignore[reportAssignmentType]
        elif callable(work):
            unit = CallableWork(work)
        else:
            raise TypeError(f"Work units need a perform() method or must be callable: {work!r}")
        self._work.append(unit)
        return unit

    def events(self, phase: EventPhase) -> tuple[DeferredEvent, ...]:
        return tuple(self._events[phase])

    @property
    def messages(self) -> tuple[object, ...]:
        return tuple(self._messages)

    @property
    def work(self) -> tuple[WorkUnit, ...]:
        return tuple(self._work)

    def drain_events(self, phase: EventPhase) -> Iterator[DeferredEvent]:
        """Pop events of ``phase`` one at a time; an event is never yielded twice."""

        queue = self._events[phase]
        while queue:
            yield queue.popleft()

    def drain_messages(self) -> Iterator[object]:
        while self._messages:
            yield self._messages.popleft()

    def discard(self, phase: EventPhase) -> int:
        """Drop the events of a phase that will not run and return how many were dropped."""

        queue = self._events[phase]
        dropped = len(queue)
        queue.clear()
        return dropped
