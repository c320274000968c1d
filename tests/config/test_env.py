from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from stagedwork.config import (
    InvalidConfigurationError,
    MissingConfigurationError,
    env_flag,
    env_float,
    load_env_file,
    optional_env_var,
    require_env_vars,
)
from stagedwork.domain.errors import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "value")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_VAR", raising=False)
    monkeypatch.setenv("BLANK_VAR", "   ")

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_VAR", "BLANK_VAR"])

    assert "BLANK_VAR, MISSING_VAR" in str(exc.value)
    assert isinstance(exc.value, ConfigurationError)


def test_optional_env_var_strips_and_treats_blank_as_missing(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PADDED_VAR", "  value ")
    monkeypatch.setenv("BLANK_VAR", "")

    assert optional_env_var("PADDED_VAR") == "value"
    assert optional_env_var("BLANK_VAR") is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("Yes", True), ("on", True), ("0", False), ("FALSE", False), ("off", False)],
)
def test_env_flag_parses_common_spellings(
    monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool
) -> None:
    monkeypatch.setenv("FLAG_VAR", raw)

    assert env_flag("FLAG_VAR", default=not expected) is expected


def test_env_flag_rejects_unknown_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLAG_VAR", "maybe")

    with pytest.raises(InvalidConfigurationError):
        env_flag("FLAG_VAR", default=True)


def test_env_float_defaults_and_validates(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FLOAT_VAR", raising=False)
    assert env_float("FLOAT_VAR", default=2.5) == 2.5

    monkeypatch.setenv("FLOAT_VAR", "abc")
    with pytest.raises(InvalidConfigurationError):
        env_float("FLOAT_VAR", default=2.5)


def test_load_env_file_does_not_override_by_default(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("DOTENV_NEW=from-file\nDOTENV_SET=from-file\n")
    monkeypatch.delenv("DOTENV_NEW", raising=False)
    monkeypatch.setenv("DOTENV_SET", "from-env")

    assert load_env_file(env_file)

    assert optional_env_var("DOTENV_NEW") == "from-file"
    assert optional_env_var("DOTENV_SET") == "from-env"
