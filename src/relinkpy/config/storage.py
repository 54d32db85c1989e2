"""Database location for the SQLAlchemy store."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "relinkpy"
DEFAULT_DB_FILENAME: Final[str] = "relinkpy.db"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def data_dir() -> Path:
    """``RELINKPY_DATA_DIR`` if set, otherwise ``$XDG_DATA_HOME/relinkpy``."""

    override = os.getenv("RELINKPY_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    xdg_home = os.getenv("XDG_DATA_HOME")
    base = Path(xdg_home) if xdg_home else Path.home() / ".local" / "share"
    return (base / APP_DIR_NAME).expanduser().resolve()


def get_database_config() -> DatabaseConfig:
    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    directory = data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return DatabaseConfig(uri=f"sqlite+pysqlite:///{directory / DEFAULT_DB_FILENAME}")
