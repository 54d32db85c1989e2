from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from relinkpy.config import (
    EngineSettings,
    InvalidConfigurationValueError,
    MissingConfigurationError,
    RateLimit,
    data_dir,
    env_int,
    get_database_config,
    get_engine_settings,
    get_firestore_config,
    require_env_var,
    require_env_vars,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "value")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_raises_when_any_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_VAR", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_VAR"])

    assert "MISSING_VAR" in str(exc.value)


def test_require_env_var_handles_blank_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "   ")

    with pytest.raises(MissingConfigurationError):
        require_env_var("EXAMPLE_VAR")


def test_env_int_validates_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELINK_PAGE_SIZE", "0")

    with pytest.raises(InvalidConfigurationValueError, match="RELINK_PAGE_SIZE"):
        env_int("RELINK_PAGE_SIZE", 100, minimum=1)

    monkeypatch.delenv("RELINK_PAGE_SIZE")
    assert env_int("RELINK_PAGE_SIZE", 100, minimum=1) == 100


def test_engine_settings_defaults_and_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("RELINK_"):
            monkeypatch.delenv(name)
    assert get_engine_settings() == EngineSettings()

    monkeypatch.setenv("RELINK_UNIT_SIZE", "25")
    monkeypatch.setenv("RELINK_UNIT_DELAY", "0")

    settings = get_engine_settings()

    assert settings.unit_size == 25
    assert settings.unit_delay_seconds == 0.0
    assert settings.page_size == 100


def test_call_timeout_zero_disables_it(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELINK_CALL_TIMEOUT", "0")
    monkeypatch.setenv("RELINK_LOOKUP_CACHE_SIZE", "0")
    monkeypatch.setenv("RELINK_LOOKUP_CACHE_TTL", "30")

    settings = get_engine_settings()

    assert settings.call_timeout_seconds is None
    assert settings.lookup_cache_size == 0
    assert settings.lookup_cache_ttl_seconds == 30.0

    monkeypatch.setenv("RELINK_CALL_TIMEOUT", "2.5")
    assert get_engine_settings().call_timeout_seconds == 2.5


def test_lookup_cache_size_must_not_be_negative(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELINK_LOOKUP_CACHE_SIZE", "-1")

    with pytest.raises(InvalidConfigurationValueError, match="RELINK_LOOKUP_CACHE_SIZE"):
        get_engine_settings()


def test_engine_settings_reject_non_positive_sizes() -> None:
    with pytest.raises(ValueError, match="unit_size"):
        EngineSettings(unit_size=0)


def test_without_delays_keeps_sizes() -> None:
    settings = EngineSettings(page_size=7).without_delays()

    assert settings.page_size == 7
    assert settings.page_delay_seconds == 0.0
    assert settings.retry_backoff_seconds == 0.0


def test_firestore_config_from_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    credentials = tmp_path / "service-account.json"
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "demo")
    monkeypatch.setenv("FIRESTORE_DATABASE", "migrations")
    monkeypatch.setenv("FIRESTORE_CREDENTIALS_FILE", str(credentials))
    monkeypatch.setenv("FIRESTORE_TIMEOUT", "5")
    monkeypatch.setenv("FIRESTORE_MAX_CALLS_PER_SECOND", "8")

    config = get_firestore_config()

    assert config.project_id == "demo"
    assert config.database == "migrations"
    assert config.credentials_file == credentials
    assert config.timeout_seconds == 5.0
    assert config.ratelimit == RateLimit(max_calls=8, per_seconds=1.0)
    assert config.max_batch_writes == 500


def test_firestore_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "demo")
    for name in (
        "FIRESTORE_DATABASE",
        "FIRESTORE_CREDENTIALS_FILE",
        "FIRESTORE_TIMEOUT",
        "FIRESTORE_MAX_CALLS_PER_SECOND",
    ):
        monkeypatch.delenv(name, raising=False)

    config = get_firestore_config()

    assert config.database == "(default)"
    assert config.credentials_file is None
    assert config.timeout_seconds == 20.0
    assert config.ratelimit == RateLimit(max_calls=20, per_seconds=1.0)


def test_firestore_config_requires_project(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FIRESTORE_PROJECT_ID", raising=False)

    with pytest.raises(MissingConfigurationError, match="FIRESTORE_PROJECT_ID"):
        get_firestore_config()


def test_database_uri_prefers_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("DATABASE_URI", "sqlite+pysqlite:///custom.db")
    assert get_database_config().uri == "sqlite+pysqlite:///custom.db"

    monkeypatch.delenv("DATABASE_URI")
    monkeypatch.setenv("RELINKPY_DATA_DIR", str(tmp_path))

    uri = get_database_config().uri

    assert uri == f"sqlite+pysqlite:///{tmp_path.resolve() / 'relinkpy.db'}"


def test_database_uri_defaults_to_xdg_data_home(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv("DATABASE_URI", raising=False)
    monkeypatch.delenv("RELINKPY_DATA_DIR", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))

    uri = get_database_config().uri

    assert data_dir() == tmp_path.resolve() / "relinkpy"
    assert data_dir().is_dir()
    assert uri == f"sqlite+pysqlite:///{tmp_path.resolve() / 'relinkpy' / 'relinkpy.db'}"
