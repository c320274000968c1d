"""Engine state and the session scope that hosts one coordinated transaction."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from stagedwork.config.storage import get_database_config
from stagedwork.domain.errors import ConfigurationError

from .executor import SqlAlchemyBulkWriteExecutor
from .lookup import SqlAlchemyLookupService
from .savepoints import SqlAlchemySavepointProvider

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy import Connection, MetaData
    from sqlalchemy.engine import Engine

    from stagedwork.domain.ports import AccessPolicy

log = getLogger(__name__)


class StartupError(ConfigurationError):
    """Raised when the SQLAlchemy adapter is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call stagedwork.adapters.sqlalchemy."
                "startup() before opening storage."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def _disable_driver_transactions(dbapi_connection: object, _record: object) -> None:
    dbapi_connection.isolation_level = None  # pyright: ignore[reportAttributeAccessIssue]


def _emit_begin(connection: Connection) -> None:
    connection.exec_driver_sql("BEGIN")


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Let pysqlite honour SAVEPOINT by emitting BEGIN ourselves.

    Must run before the engine opens its first connection.
    """

    if event.contains(engine, "begin", _emit_begin):
        return
    event.listen(engine, "connect", _disable_driver_transactions)
    event.listen(engine, "begin", _emit_begin)


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    metadata: MetaData | None = None,
    force: bool = False,
) -> Engine:
    """Initialise the engine and session factory; ``metadata`` tables are created if missing."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    if engine is None:
        database = get_database_config()
        engine = create_engine(database_uri or database.uri, echo=database.echo)
    if engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine)
    if metadata is not None:
        metadata.create_all(engine, checkfirst=True)

    _STATE.engine = engine
    log.debug(f"SQLAlchemy adapter started on {engine.url!r}")
    return engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


class SqlAlchemyStorage:
    """Session scope exposing the executor, lookup and savepoint ports on one session.

    Leaving the block with an exception rolls the session back; otherwise the caller
    decides between ``commit`` and ``rollback``. The session is always closed.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | None = None,
        access_policy: AccessPolicy | None = None,
    ) -> None:
        self.session_factory = session_factory or _STATE.session_factory
        self.access_policy = access_policy
        self._session: Session | None = None

    def __enter__(self) -> SqlAlchemyStorage:
        if self._session is not None:
            raise StartupError("Storage session already initialised")
        self._session = self.session_factory()
        self.executor = SqlAlchemyBulkWriteExecutor(
            self._session, access_policy=self.access_policy
        )
        self.lookup = SqlAlchemyLookupService(self._session)
        self.savepoints = SqlAlchemySavepointProvider(self._session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self.session.close()
        self._session = None
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Storage session not initialised")
        return self._session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
