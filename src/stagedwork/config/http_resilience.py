"""Configuration types for the outbound webhook clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from httpx_retries import Retry

from .env import env_float, optional_env_var

if TYPE_CHECKING:
    from collections.abc import Mapping

WEBHOOK_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = 3
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0
    respect_retry_after_header: bool = True
    allowed_methods: frozenset[str] = field(default_factory=lambda: frozenset({"POST"}))
    status_forcelist: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 1.0

    def build(self) -> Retry:
        return Retry(
            total=self.total,
            backoff_factor=self.backoff_factor,
            max_backoff_wait=self.max_backoff_wait,
            respect_retry_after_header=self.respect_retry_after_header,
            allowed_methods=tuple(self.allowed_methods),
            status_forcelist=tuple(self.status_forcelist),
            retry_on_exceptions=self.retry_on_exceptions,
            backoff_jitter=self.backoff_jitter,
        )


@dataclass(slots=True, frozen=True)
class WebhookConfig:
    """Where and how deferred events and messages are delivered."""

    event_url: str | None = None
    message_url: str | None = None
    timeout_seconds: float = WEBHOOK_TIMEOUT_SECONDS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    default_headers: Mapping[str, str] | None = None


def get_webhook_config(*, retry: RetryPolicy | None = None) -> WebhookConfig:
    return WebhookConfig(
        event_url=optional_env_var("STAGEDWORK_EVENT_WEBHOOK_URL"),
        message_url=optional_env_var("STAGEDWORK_MESSAGE_WEBHOOK_URL"),
        timeout_seconds=env_float("STAGEDWORK_WEBHOOK_TIMEOUT", default=WEBHOOK_TIMEOUT_SECONDS),
        retry=retry or RetryPolicy(),
    )
