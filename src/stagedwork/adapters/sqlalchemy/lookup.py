"""External-identifier lookups with one ``IN`` query per call."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import select

from .mapping import column_for

if TYPE_CHECKING:
    from collections.abc import Hashable

    from sqlalchemy.orm import Session

    from stagedwork.domain.model import EntityType

log = getLogger(__name__)


class SqlAlchemyLookupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_external_id(
        self,
        entity_type: EntityType,
        field: str,
        values: set[Hashable],
    ) -> dict[Hashable, object]:
        if not values:
            return {}
        external_column = column_for(entity_type, field)
        id_column = column_for(entity_type, entity_type.id_field)
        stmt = select(external_column, id_column).where(external_column.in_(values))
        found: dict[Hashable, object] = {
            value: identity for value, identity in self.session.execute(stmt)
        }
        log.debug(
            f"Resolved {len(found)} of {len(values)} {entity_type.name}.{field} value(s)"
        )
        return found


if TYPE_CHECKING:
    from typing import cast

    from stagedwork.domain.ports import LookupService

    _lookup_check: LookupService = SqlAlchemyLookupService(cast("Session", object()))
