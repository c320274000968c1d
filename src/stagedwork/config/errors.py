"""Configuration error definitions."""

from __future__ import annotations

from stagedwork.domain.errors import ConfigurationError


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""


class InvalidConfigurationError(ConfigurationError):
    """Raised when a configuration value cannot be parsed."""
