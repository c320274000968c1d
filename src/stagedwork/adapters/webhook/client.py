"""Event and message transports that POST JSON envelopes to a webhook."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Literal

import httpx
from httpx_retries import RetryTransport

from stagedwork.config.errors import MissingConfigurationError
from stagedwork.config.http_resilience import WebhookConfig

from .schema import EventEnvelope, MessageEnvelope

if TYPE_CHECKING:
    from types import TracebackType

    from pydantic import BaseModel

log = getLogger(__name__)


class WebhookClient:
    """Synchronous httpx client with retries; non-2xx responses raise ``HTTPStatusError``."""

    def __init__(
        self,
        url: str,
        *,
        config: WebhookConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.config = config or WebhookConfig()
        retry_transport = RetryTransport(
            transport=transport or httpx.HTTPTransport(),
            retry=self.config.retry.build(),
        )
        headers = dict(self.config.default_headers) if self.config.default_headers else None
        self._client = httpx.Client(
            timeout=self.config.timeout_seconds,
            transport=retry_transport,
            headers=headers,
        )

    def __enter__(self) -> WebhookClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False

    def close(self) -> None:
        self._client.close()

    def post(self, envelope: BaseModel) -> httpx.Response:
        response = self._client.post(
            self.url,
            content=envelope.model_dump_json(),
            headers={"Content-Type": "application/json"},
        )
        if response.is_error:
            log.error(f"Webhook {self.url} answered {response.status_code}: {response.text}")
        response.raise_for_status()
        return response


class WebhookEventTransport:
    def __init__(self, client: WebhookClient) -> None:
        self.client = client

    @classmethod
    def from_config(
        cls,
        config: WebhookConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> WebhookEventTransport:
        if config.event_url is None:
            raise MissingConfigurationError(
                "Missing configuration for: STAGEDWORK_EVENT_WEBHOOK_URL"
            )
        return cls(WebhookClient(config.event_url, config=config, transport=transport))

    def publish(self, payload: object) -> None:
        envelope = EventEnvelope.wrap(payload)
        self.client.post(envelope)
        log.debug(f"Published {envelope.event_type} event")


class WebhookMessageTransport:
    def __init__(self, client: WebhookClient) -> None:
        self.client = client

    @classmethod
    def from_config(
        cls,
        config: WebhookConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> WebhookMessageTransport:
        if config.message_url is None:
            raise MissingConfigurationError(
                "Missing configuration for: STAGEDWORK_MESSAGE_WEBHOOK_URL"
            )
        return cls(WebhookClient(config.message_url, config=config, transport=transport))

    def send(self, message: object) -> None:
        envelope = MessageEnvelope.wrap(message)
        self.client.post(envelope)
        log.debug(f"Sent {envelope.message_type} message")


if TYPE_CHECKING:
    from typing import cast

    from stagedwork.domain.ports import EventTransport, MessageTransport

    _event_check: EventTransport = WebhookEventTransport(cast("WebhookClient", object()))
    _message_check: MessageTransport = WebhookMessageTransport(cast("WebhookClient", object()))
