"""SQLAlchemy adapter package for relinkpy."""

from __future__ import annotations

from .mappings import create_all_tables, documents_table, metadata
from .store import (
    SqlAlchemyDocumentStore,
    StartupError,
    configured_engine,
    create_store_engine,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyDocumentStore",
    "StartupError",
    "configured_engine",
    "create_all_tables",
    "create_store_engine",
    "documents_table",
    "metadata",
    "shutdown",
    "startup",
]
