"""Pydantic envelopes posted to the webhook endpoints."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Literal, cast

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python


class WebhookBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class EventEnvelope(WebhookBaseModel):
    kind: Literal["event"] = "event"
    event_type: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: Any

    @classmethod
    def wrap(cls, event: object) -> EventEnvelope:
        return cls(event_type=type_name(event), payload=to_jsonable_python(event))


class MessageEnvelope(WebhookBaseModel):
    kind: Literal["message"] = "message"
    message_type: str
    payload: Any

    @classmethod
    def wrap(cls, message: object) -> MessageEnvelope:
        return cls(message_type=type_name(message), payload=to_jsonable_python(message))


def type_name(value: object) -> str:
    """Name a payload: a mapping's ``type`` entry, else its class name."""

    if isinstance(value, Mapping):
        declared = cast(Mapping[str, object], value).get("type")
        if isinstance(declared, str) and declared:
            return declared
    return type(value).__name__
