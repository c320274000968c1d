"""Webhook transports for deferred events and auxiliary messages."""

from __future__ import annotations

from .client import WebhookClient, WebhookEventTransport, WebhookMessageTransport
from .schema import EventEnvelope, MessageEnvelope

__all__ = [
    "EventEnvelope",
    "MessageEnvelope",
    "WebhookClient",
    "WebhookEventTransport",
    "WebhookMessageTransport",
]
