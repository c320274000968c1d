"""Savepoints backed by ``Session.begin_nested``."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, SessionTransaction


class SqlAlchemySavepointProvider:
    def __init__(self, session: Session) -> None:
        self.session = session

    def open(self) -> SessionTransaction:
        return self.session.begin_nested()

    def rollback(self, handle: SessionTransaction) -> None:
        if handle.is_active:
            handle.rollback()

    def release(self, handle: SessionTransaction) -> None:
        if handle.is_active:
            handle.commit()


if TYPE_CHECKING:
    from typing import cast

    from stagedwork.domain.ports import SavepointProvider

    _savepoint_check: SavepointProvider[SessionTransaction] = SqlAlchemySavepointProvider(
        cast("Session", object())
    )
