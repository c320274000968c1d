"""Mapper lookups for records of declared entity types."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable

from stagedwork.domain.errors import ConfigurationError

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.orm import Mapper

    from stagedwork.domain.model import EntityType


def mapper_for(entity_type: EntityType) -> Mapper[object]:
    try:
        return inspect(entity_type.record_class)
    except NoInspectionAvailable as exc:
        raise ConfigurationError(
            f"Entity type {entity_type.name} is not mapped with SQLAlchemy"
        ) from exc


def column_for(entity_type: EntityType, attribute: str) -> ColumnElement[object]:
    mapper = mapper_for(entity_type)
    try:
        return mapper.columns[attribute]
    except KeyError as exc:
        raise ConfigurationError(
            f"{entity_type.name}.{attribute} is not a mapped column"
        ) from exc
