"""Application configuration helpers."""

from __future__ import annotations

from .coordinator import CoordinatorConfig, get_coordinator_config
from .env import env_flag, env_float, load_env_file, optional_env_var, require_env_vars
from .errors import InvalidConfigurationError, MissingConfigurationError
from .http_resilience import RetryPolicy, WebhookConfig, get_webhook_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "CoordinatorConfig",
    "DatabaseConfig",
    "InvalidConfigurationError",
    "MissingConfigurationError",
    "RetryPolicy",
    "StorageConfig",
    "WebhookConfig",
    "env_flag",
    "env_float",
    "get_coordinator_config",
    "get_database_config",
    "get_storage_config",
    "get_webhook_config",
    "load_env_file",
    "optional_env_var",
    "require_env_vars",
]
