from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from stagedwork.adapters.memory import InMemoryStorage
from stagedwork.adapters.sqlalchemy import enable_sqlite_savepoints, shutdown, startup
from stagedwork.domain.coordinator import UnitOfWorkCoordinator
from stagedwork.domain.strategies import SystemModeWriteStrategy
from tests.helpers.records import DECLARED_TYPES
from tests.helpers.tables import mapper_registry, start_mappers
from tests.helpers.transports import RecordingEventTransport, RecordingMessageTransport

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from stagedwork.domain.model import EntityType
    from tests.helpers.coordinators import CoordinatorFactory


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def events() -> RecordingEventTransport:
    return RecordingEventTransport()


@pytest.fixture
def messages() -> RecordingMessageTransport:
    return RecordingMessageTransport()


@pytest.fixture
def make_coordinator(
    storage: InMemoryStorage,
    events: RecordingEventTransport,
    messages: RecordingMessageTransport,
) -> CoordinatorFactory:
    """Coordinator over the in-memory storage; keyword arguments override the defaults."""

    def factory(
        entity_types: Iterable[EntityType | type[Any]] = DECLARED_TYPES,
        **kwargs: Any,
    ) -> UnitOfWorkCoordinator:
        options: dict[str, Any] = {
            "strategy": SystemModeWriteStrategy(storage),
            "savepoints": storage,
            "lookup": storage,
            "event_transport": events,
            "message_transport": messages,
        }
        options.update(kwargs)
        return UnitOfWorkCoordinator(entity_types, **options)

    return factory


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def mapped_engine(sqlite_engine: Engine) -> Iterator[Engine]:
    """Engine managed by the SQLAlchemy adapter with the test tables created."""

    start_mappers()
    engine = startup(engine=sqlite_engine, metadata=mapper_registry.metadata, force=True)
    try:
        yield engine
    finally:
        shutdown()
