"""Coordinator behaviour settings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from stagedwork.domain.model import AccessLevel, DeleteOrder, EnforcementMode

from .env import env_flag, optional_env_var
from .errors import InvalidConfigurationError


@dataclass(frozen=True, slots=True)
class CoordinatorConfig:
    delete_order: DeleteOrder = DeleteOrder.DECLARED
    enforcement: EnforcementMode = EnforcementMode.SYSTEM
    access_level: AccessLevel = AccessLevel.USER_MODE
    all_or_none: bool = True


def _parse_enum[TEnum: StrEnum](name: str, enum: type[TEnum], default: TEnum) -> TEnum:
    value = optional_env_var(name)
    if value is None:
        return default
    try:
        return enum(value.lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum)
        raise InvalidConfigurationError(
            f"{name} must be one of {allowed}, got {value!r}"
        ) from exc


def get_coordinator_config() -> CoordinatorConfig:
    return CoordinatorConfig(
        delete_order=_parse_enum("STAGEDWORK_DELETE_ORDER", DeleteOrder, DeleteOrder.DECLARED),
        enforcement=_parse_enum(
            "STAGEDWORK_ENFORCEMENT", EnforcementMode, EnforcementMode.SYSTEM
        ),
        access_level=_parse_enum(
            "STAGEDWORK_ACCESS_LEVEL", AccessLevel, AccessLevel.USER_MODE
        ),
        all_or_none=env_flag("STAGEDWORK_ALL_OR_NONE", default=True),
    )
