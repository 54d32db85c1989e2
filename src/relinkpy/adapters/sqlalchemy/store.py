"""SQLAlchemy-backed document store."""

from __future__ import annotations

import asyncio
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import and_, create_engine, func, insert, make_url, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from relinkpy.config.storage import get_database_config
from relinkpy.domain.model import Record
from relinkpy.domain.ports.store import DocumentStore, Page
from relinkpy.domain.reconciliation.errors import PermanentStoreError, TransientStoreError

from .mappings import create_all_tables, documents_table, from_json_fields, to_json_fields

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence

    from sqlalchemy import ColumnElement
    from sqlalchemy.engine import Engine

    from relinkpy.domain.ports.store import Cursor, FieldUpdate, RecordFilter

log = getLogger(__name__)

DEFAULT_MAX_BATCH_WRITES = 500


def create_store_engine(database_uri: str) -> Engine:
    """Create an engine whose connections may be used from worker threads.

    An in-memory SQLite database only exists on its own connection, so it is
    pinned to a single shared connection.
    """

    url = make_url(database_uri)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url)


class StartupError(RuntimeError):
    """Raised when the SQLAlchemy document store is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Initialise the SQLAlchemy engine and create the document table."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )
    resolved_engine = engine or create_store_engine(database_uri or get_database_config().uri)
    create_all_tables(resolved_engine)
    _STATE.engine = resolved_engine
    return resolved_engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


def _require_engine() -> Engine:
    if _STATE.engine is None:
        raise StartupError(
            "SQLAlchemy adapter not initialised. Call relinkpy.adapters.sqlalchemy."
            "startup() before creating a document store."
        )
    return _STATE.engine


def _new_record_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except OperationalError as exc:
        raise TransientStoreError(f"Database unavailable while {action}: {exc}") from exc
    except SQLAlchemyError as exc:
        raise PermanentStoreError(f"Database error while {action}: {exc}") from exc


def _field_condition(name: str, value: object) -> ColumnElement[bool]:
    element = documents_table.c.fields[name]
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    if isinstance(value, str):
        return element.as_string() == value
    raise PermanentStoreError(f"Unsupported filter value for field {name!r}: {value!r}")


@dataclass(slots=True)
class SqlAlchemyDocumentStore:
    """:class:`DocumentStore` over one relational ``documents`` table.

    Every call runs in a worker thread through :func:`asyncio.to_thread`, so a
    slow or locked database never blocks the event loop and the engine's call
    timeout can give up on it.
    """

    engine: Engine = field(default_factory=_require_engine)
    max_batch_writes: int = DEFAULT_MAX_BATCH_WRITES
    id_factory: Callable[[], str] = field(default=_new_record_id)

    async def scan_page(
        self,
        collection: str,
        *,
        page_size: int,
        cursor: Cursor | None = None,
    ) -> Page:
        return await asyncio.to_thread(self._scan_page, collection, page_size, cursor)

    async def probe_one(self, collection: str, record_filter: RecordFilter) -> Record | None:
        return await asyncio.to_thread(self._probe_one, collection, record_filter)

    async def get_record(self, collection: str, record_id: str) -> Record | None:
        return await asyncio.to_thread(self._get_record, collection, record_id)

    async def create_record(self, collection: str, fields: Mapping[str, object]) -> str:
        return await asyncio.to_thread(self._create_record, collection, fields)

    async def commit_batch(self, updates: Sequence[FieldUpdate]) -> None:
        """Merge every update's fields into its record in one transaction."""

        if not updates:
            return
        if len(updates) > self.max_batch_writes:
            raise PermanentStoreError(
                f"Batch of {len(updates)} writes exceeds the limit of {self.max_batch_writes}"
            )
        await asyncio.to_thread(self._commit_batch, updates)

    def insert_records(self, collection: str, records: Sequence[Record]) -> None:
        """Seed ``collection`` with records keeping their ids (imports and tests)."""

        if not records:
            return
        rows = [
            {"collection": collection, "id": record.id, "fields": to_json_fields(record.fields)}
            for record in records
        ]
        with _translate_errors(f"seeding {collection}"), self.engine.begin() as connection:
            connection.execute(insert(documents_table), rows)

    def _scan_page(self, collection: str, page_size: int, cursor: Cursor | None) -> Page:
        statement = select(documents_table.c.id, documents_table.c.fields).where(
            documents_table.c.collection == collection
        )
        if cursor is not None:
            statement = statement.where(documents_table.c.id > cursor)
        statement = statement.order_by(documents_table.c.id).limit(page_size)

        with _translate_errors(f"scanning {collection}"), self.engine.connect() as connection:
            rows = connection.execute(statement).all()

        records = tuple(Record(id=row.id, fields=from_json_fields(row.fields)) for row in rows)
        next_cursor = records[-1].id if len(records) >= page_size else None
        return Page(records=records, next_cursor=next_cursor)

    def _probe_one(self, collection: str, record_filter: RecordFilter) -> Record | None:
        conditions = [documents_table.c.collection == collection]
        conditions.extend(
            _field_condition(name, value) for name, value in record_filter.equals.items()
        )
        conditions.extend(
            documents_table.c.fields[name].as_string().is_not(None)
            for name in record_filter.not_null
        )
        statement = (
            select(documents_table.c.id, documents_table.c.fields)
            .where(and_(*conditions))
            .order_by(documents_table.c.id)
            .limit(1)
        )
        with _translate_errors(f"probing {collection}"), self.engine.connect() as connection:
            row = connection.execute(statement).first()
        if row is None:
            return None
        return Record(id=row.id, fields=from_json_fields(row.fields))

    def _get_record(self, collection: str, record_id: str) -> Record | None:
        statement = select(documents_table.c.fields).where(
            documents_table.c.collection == collection,
            documents_table.c.id == record_id,
        )
        with (
            _translate_errors(f"reading {collection}/{record_id}"),
            self.engine.connect() as connection,
        ):
            fields = connection.execute(statement).scalar_one_or_none()
        if fields is None:
            return None
        return Record(id=record_id, fields=from_json_fields(fields))

    def _create_record(self, collection: str, fields: Mapping[str, object]) -> str:
        record_id = self.id_factory()
        statement = insert(documents_table).values(
            collection=collection,
            id=record_id,
            fields=to_json_fields(fields),
        )
        with (
            _translate_errors(f"creating a record in {collection}"),
            self.engine.begin() as connection,
        ):
            connection.execute(statement)
        return record_id

    def _commit_batch(self, updates: Sequence[FieldUpdate]) -> None:
        with _translate_errors("committing a batch"), self.engine.begin() as connection:
            for item in updates:
                current = connection.execute(
                    select(documents_table.c.fields).where(
                        documents_table.c.collection == item.collection,
                        documents_table.c.id == item.record_id,
                    )
                ).scalar_one_or_none()
                if current is None:
                    raise PermanentStoreError(
                        f"Cannot update missing record {item.collection}/{item.record_id}"
                    )
                merged = {**current, **to_json_fields(item.fields)}
                connection.execute(
                    update(documents_table)
                    .where(
                        documents_table.c.collection == item.collection,
                        documents_table.c.id == item.record_id,
                    )
                    .values(fields=merged, updated_at=func.now())
                )
        log.debug("Committed %s updates", len(updates))


if TYPE_CHECKING:
    _store_check: DocumentStore = SqlAlchemyDocumentStore()
