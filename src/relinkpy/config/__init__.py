"""Application configuration helpers."""

from __future__ import annotations

from .engine import EngineSettings, get_engine_settings
from .env import env_float, env_int, optional_env_var, require_env_var, require_env_vars
from .errors import (
    ConfigurationError,
    InvalidConfigurationValueError,
    MissingConfigurationError,
)
from .firestore import FirestoreConfig, RateLimit, get_firestore_config
from .logging import configure_logging
from .storage import DatabaseConfig, data_dir, get_database_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "EngineSettings",
    "FirestoreConfig",
    "InvalidConfigurationValueError",
    "MissingConfigurationError",
    "RateLimit",
    "configure_logging",
    "data_dir",
    "env_float",
    "env_int",
    "get_database_config",
    "get_engine_settings",
    "get_firestore_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
