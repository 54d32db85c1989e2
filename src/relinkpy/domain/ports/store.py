"""Port for the document store a migration reads from and writes to."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from relinkpy.domain.model import Record

type Cursor = str


@dataclass(slots=True, frozen=True)
class Page:
    """One page of a forward-only scan.

    ``next_cursor`` is ``None`` once the store has no further records.
    """

    records: tuple[Record, ...]
    next_cursor: Cursor | None = None


@dataclass(slots=True, frozen=True)
class RecordFilter:
    """Conjunction of field equalities and not-null checks."""

    equals: Mapping[str, object] = field(default_factory=dict["str", "object"])
    not_null: tuple[str, ...] = ()

    def matches(self, record: Record) -> bool:
        for name, expected in self.equals.items():
            if record.get(name) != expected:
                return False
        return all(record.get(name) is not None for name in self.not_null)


@dataclass(slots=True, frozen=True)
class FieldUpdate:
    """Field-level update of one existing record, staged into a batch commit."""

    collection: str
    record_id: str
    fields: Mapping[str, object]


@runtime_checkable
class DocumentStore(Protocol):
    """Narrow store contract used by the reconciliation engine.

    Scans are ordered by record id so no record is skipped or repeated across
    pages. ``commit_batch`` applies every update or none of them.
    """

    @property
    def max_batch_writes(self) -> int: ...

    async def scan_page(
        self,
        collection: str,
        *,
        page_size: int,
        cursor: Cursor | None = None,
    ) -> Page: ...

    async def probe_one(self, collection: str, record_filter: RecordFilter) -> Record | None: ...

    async def get_record(self, collection: str, record_id: str) -> Record | None: ...

    async def create_record(self, collection: str, fields: Mapping[str, object]) -> str: ...

    async def commit_batch(self, updates: Sequence[FieldUpdate]) -> None: ...


__all__ = ["Cursor", "DocumentStore", "FieldUpdate", "Page", "RecordFilter"]
