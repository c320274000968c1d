"""Ports consumed by the coordinator."""

from __future__ import annotations

from .dispatch import EventTransport, MessageTransport, WorkUnit
from .persistence import AccessPolicy, BulkWriteExecutor, LookupService, SavepointProvider

__all__ = [
    "AccessPolicy",
    "BulkWriteExecutor",
    "EventTransport",
    "LookupService",
    "MessageTransport",
    "SavepointProvider",
    "WorkUnit",
]
