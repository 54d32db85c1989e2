"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from relinkpy.adapters.firestore import FirestoreDocumentStore
from relinkpy.adapters.reporting import LoggingProgressReporter
from relinkpy.adapters.sqlalchemy import SqlAlchemyDocumentStore, configured_engine, startup
from relinkpy.config import get_engine_settings, get_firestore_config
from relinkpy.domain.model import RunPhase
from relinkpy.domain.reconciliation import (
    MigrationHistoryRecorder,
    ReconciliationEngine,
    get_migration,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence

    from relinkpy.config import EngineSettings
    from relinkpy.domain.model import RunProgress
    from relinkpy.domain.ports import DocumentStore, ProgressReporter
    from relinkpy.domain.reconciliation import HistoryEntry, MigrationDefinition

type Backend = Literal["sqlalchemy", "firestore"]
type EngineListener = Callable[[ReconciliationEngine], None]

BACKENDS: tuple[Backend, ...] = ("sqlalchemy", "firestore")

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MigrationRunResult:
    migration: str
    progress: RunProgress
    history_entry_id: str | None = None

    @property
    def completed(self) -> bool:
        return self.progress.phase is RunPhase.COMPLETED

    @property
    def paused(self) -> bool:
        return self.progress.phase is RunPhase.PAUSED

    @property
    def failed(self) -> bool:
        return self.progress.phase is RunPhase.ERROR


@asynccontextmanager
async def open_store(backend: Backend) -> AsyncIterator[DocumentStore]:
    """Yield the configured document store for ``backend``."""

    if backend == "sqlalchemy":
        engine = configured_engine() or startup()
        yield SqlAlchemyDocumentStore(engine=engine)
    elif backend == "firestore":
        yield FirestoreDocumentStore(config=get_firestore_config())
    else:
        raise ValueError(f"Unsupported backend: {backend}")


async def run_migration_async(
    definition: MigrationDefinition,
    *,
    store: DocumentStore,
    settings: EngineSettings | None = None,
    reporters: Sequence[ProgressReporter] | None = None,
    record_history: bool = False,
    on_engine: EngineListener | None = None,
) -> MigrationRunResult:
    """Run ``definition`` once against ``store`` until it completes, fails or pauses."""

    engine = ReconciliationEngine(
        store=store,
        definition=definition,
        settings=settings or get_engine_settings(),
        reporters=reporters if reporters is not None else (LoggingProgressReporter(),),
    )
    if on_engine is not None:
        on_engine(engine)

    recorder = MigrationHistoryRecorder(store) if record_history else None
    entry_id = await recorder.record_start(definition) if recorder is not None else None

    progress = await engine.start()

    if recorder is not None:
        await recorder.record_finish(entry_id, progress)
    return MigrationRunResult(
        migration=definition.name,
        progress=progress,
        history_entry_id=entry_id,
    )


def run_migration(
    name: str,
    *,
    backend: Backend = "sqlalchemy",
    settings: EngineSettings | None = None,
    reporters: Sequence[ProgressReporter] | None = None,
    record_history: bool = False,
    on_engine: EngineListener | None = None,
) -> MigrationRunResult:
    """Run the built-in migration ``name`` against the configured backend."""

    definition = get_migration(name)
    log.info(
        "Starting migration %s: collection=%s, backend=%s",
        definition.name,
        definition.collection,
        backend,
    )

    async def _run() -> MigrationRunResult:
        async with open_store(backend) as store:
            return await run_migration_async(
                definition,
                store=store,
                settings=settings,
                reporters=reporters,
                record_history=record_history,
                on_engine=on_engine,
            )

    result = asyncio.run(_run())
    progress = result.progress
    log.info(
        f"Finished migration {result.migration}: phase={progress.phase.value}, "
        f"successful={progress.successful}, skipped={progress.skipped}, "
        f"errors={progress.errors}, targets_created={progress.targets_created}"
    )
    return result


def list_history(
    *,
    backend: Backend = "sqlalchemy",
    limit: int = 20,
    migration: str | None = None,
) -> list[HistoryEntry]:
    """Return recent run summaries, newest first."""

    async def _list() -> list[HistoryEntry]:
        async with open_store(backend) as store:
            recorder = MigrationHistoryRecorder(store)
            return await recorder.list_entries(limit=limit, migration=migration)

    return asyncio.run(_list())
