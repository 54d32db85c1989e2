"""Run summaries kept in the document store next to the migrated data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from relinkpy.domain.ports.store import FieldUpdate

if TYPE_CHECKING:
    from relinkpy.domain.model import Record, RunProgress
    from relinkpy.domain.ports.store import DocumentStore

    from .definitions import MigrationDefinition

log = getLogger(__name__)

HISTORY_COLLECTION = "migration_history"
_LIST_PAGE_SIZE = 100
_LIST_MAX_PAGES = 100


class HistoryEntry(BaseModel):
    """One run summary as read back from the history collection."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    migration: str = ""
    collection: str = ""
    status: str = "unknown"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    total_records: int = 0
    successful: int = 0
    skipped: int = 0
    errors: int = 0
    targets_created: int = 0
    error_message: str | None = None

    @field_validator("started_at", "finished_at", mode="after")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=UTC)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @classmethod
    def from_record(cls, record: Record) -> HistoryEntry:
        return cls.model_validate({**record.fields, "id": record.id})


def _summary_fields(progress: RunProgress) -> dict[str, object]:
    return {
        "status": progress.phase.value,
        "total_records": progress.total_records,
        "scanned_records": progress.scanned_records,
        "processed_records": progress.processed_records,
        "successful": progress.successful,
        "skipped": progress.skipped,
        "errors": progress.errors,
        "targets_created": progress.targets_created,
        "no_target_found": progress.no_target_found,
        "completed_units": progress.completed_units,
        "scan_truncated": progress.scan_truncated,
        "error_message": progress.error_message,
    }


@dataclass(slots=True)
class MigrationHistoryRecorder:
    """Write one summary document per run and read recent ones back.

    History is best effort: failures are logged and never fail the run itself.
    """

    store: DocumentStore
    collection: str = HISTORY_COLLECTION

    async def record_start(
        self,
        definition: MigrationDefinition,
        *,
        now: datetime | None = None,
    ) -> str | None:
        started_at = now or datetime.now(UTC)
        fields: dict[str, object] = {
            "migration": definition.name,
            "collection": definition.collection,
            "migration_source": definition.migration_source,
            "status": "running",
            "started_at": started_at.isoformat(),
        }
        try:
            entry_id = await self.store.create_record(self.collection, fields)
        except Exception:
            log.exception("Could not record start of migration %s", definition.name)
            return None
        log.debug("Recorded start of migration %s as %s", definition.name, entry_id)
        return entry_id

    async def record_finish(
        self,
        entry_id: str | None,
        progress: RunProgress,
        *,
        now: datetime | None = None,
    ) -> None:
        if entry_id is None:
            return
        finished_at = progress.finished_at or now or datetime.now(UTC)
        fields = _summary_fields(progress)
        fields["finished_at"] = finished_at.isoformat()
        try:
            await self.store.commit_batch(
                [FieldUpdate(collection=self.collection, record_id=entry_id, fields=fields)]
            )
        except Exception:
            log.exception("Could not record end of history entry %s", entry_id)

    async def list_entries(
        self,
        *,
        limit: int = 20,
        migration: str | None = None,
    ) -> list[HistoryEntry]:
        """Return the most recent entries first, optionally for one migration."""

        entries: list[HistoryEntry] = []
        cursor: str | None = None
        for _ in range(_LIST_MAX_PAGES):
            page = await self.store.scan_page(
                self.collection, page_size=_LIST_PAGE_SIZE, cursor=cursor
            )
            for record in page.records:
                try:
                    entry = HistoryEntry.from_record(record)
                except ValidationError as exc:
                    log.warning("Skipping unreadable history entry %s: %s", record.id, exc)
                    continue
                if migration is None or entry.migration == migration:
                    entries.append(entry)
            if page.next_cursor is None or not page.records:
                break
            cursor = page.next_cursor

        oldest = datetime.min.replace(tzinfo=UTC)
        entries.sort(key=lambda entry: entry.started_at or oldest, reverse=True)
        return entries[:limit]
