"""Ports for deferred side effects."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EventTransport(Protocol):
    """Publishes one domain event payload; raises on failure."""

    def publish(self, payload: object) -> None: ...


@runtime_checkable
class MessageTransport(Protocol):
    """Sends one auxiliary message; raises on failure."""

    def send(self, message: object) -> None: ...


@runtime_checkable
class WorkUnit(Protocol):
    """Custom logic run once after a successful DML phase."""

    def perform(self) -> None: ...
