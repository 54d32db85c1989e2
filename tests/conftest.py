from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.engine import Engine  # noqa: TC002

from relinkpy.adapters.sqlalchemy import (
    SqlAlchemyDocumentStore,
    create_all_tables,
    create_store_engine,
)
from relinkpy.adapters.sqlalchemy.store import shutdown, startup
from relinkpy.config import EngineSettings
from tests.helpers.stores import MemoryDocumentStore

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_store_engine("sqlite+pysqlite:///:memory:")
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_store(sqlite_engine: Engine) -> Iterator[SqlAlchemyDocumentStore]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyDocumentStore()
    finally:
        shutdown()


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings().without_delays()
