"""Application composition: a coordinator bound to one SQLAlchemy session."""

from __future__ import annotations

from contextlib import contextmanager
from logging import getLogger
from typing import TYPE_CHECKING, Any

from stagedwork.adapters.sqlalchemy import SqlAlchemyStorage
from stagedwork.adapters.webhook import WebhookEventTransport, WebhookMessageTransport
from stagedwork.config import get_coordinator_config
from stagedwork.domain.coordinator import UnitOfWorkCoordinator
from stagedwork.domain.strategies import build_write_strategy

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from sqlalchemy.orm import Session, sessionmaker

    from stagedwork.config import CoordinatorConfig, WebhookConfig
    from stagedwork.domain.hooks import CommitHooks
    from stagedwork.domain.model import EntityType
    from stagedwork.domain.ports import AccessPolicy, EventTransport, MessageTransport

log = getLogger(__name__)


def webhook_transports(
    config: WebhookConfig,
) -> tuple[EventTransport | None, MessageTransport | None]:
    """Build the transports whose endpoint is configured; missing URLs yield ``None``."""

    events = WebhookEventTransport.from_config(config) if config.event_url else None
    messages = WebhookMessageTransport.from_config(config) if config.message_url else None
    return events, messages


@contextmanager
def coordinated_transaction(  # noqa: PLR0913
    entity_types: Iterable[EntityType | type[Any]],
    *,
    config: CoordinatorConfig | None = None,
    hooks: CommitHooks | None = None,
    event_transport: EventTransport | None = None,
    message_transport: MessageTransport | None = None,
    access_policy: AccessPolicy | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> Iterator[UnitOfWorkCoordinator]:
    """Yield a coordinator and commit it when the block exits cleanly.

    The session commits whenever DML was applied, even if a later phase failed,
    because work units and messages already ran against that state. A failed commit
    then raises ``CommitFailedError``. An exception inside the block rolls the session
    back without committing the coordinator.
    """

    settings = config or get_coordinator_config()
    with SqlAlchemyStorage(session_factory=session_factory, access_policy=access_policy) as storage:
        coordinator = UnitOfWorkCoordinator(
            entity_types,
            strategy=build_write_strategy(storage.executor, settings),
            savepoints=storage.savepoints,
            lookup=storage.lookup,
            event_transport=event_transport,
            message_transport=message_transport,
            hooks=hooks,
            delete_order=settings.delete_order,
        )
        yield coordinator

        result = coordinator.commit()
        if result.dml_applied:
            storage.commit()
        else:
            log.warning("Rolling back session: no DML was applied")
            storage.rollback()
        result.raise_for_failure()
