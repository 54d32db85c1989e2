"""SQLAlchemy table metadata for the document store.

Every collection lives in one ``documents`` table keyed by ``(collection, id)``;
a document's fields are kept in a JSON column.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import JSON, Column, DateTime, Dialect, MetaData, String, Table, TypeDecorator, func

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

TIMESTAMP_TAG = "$timestamp"

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "pk": "pk_%(table_name)s",
    }
)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def to_json_value(value: object) -> object:
    """Make ``value`` JSON serializable, tagging datetimes so they survive a round trip."""

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return {TIMESTAMP_TAG: value.astimezone(UTC).isoformat()}
    if isinstance(value, list | tuple):
        return [to_json_value(item) for item in cast(list[Any], value)]
    if isinstance(value, dict):
        mapping = cast(dict[str, Any], value)
        return {str(key): to_json_value(item) for key, item in mapping.items()}
    return value


def from_json_value(value: object) -> object:
    if isinstance(value, list):
        return [from_json_value(item) for item in cast(list[Any], value)]
    if isinstance(value, dict):
        mapping = cast(dict[str, Any], value)
        if len(mapping) == 1 and isinstance(mapping.get(TIMESTAMP_TAG), str):
            return datetime.fromisoformat(mapping[TIMESTAMP_TAG])
        return {key: from_json_value(item) for key, item in mapping.items()}
    return value


def to_json_fields(fields: Mapping[str, object]) -> dict[str, object]:
    return {name: to_json_value(value) for name, value in fields.items()}


def from_json_fields(fields: Mapping[str, object] | None) -> dict[str, object]:
    if not fields:
        return {}
    return {name: from_json_value(value) for name, value in fields.items()}


documents_table = Table(
    "documents",
    metadata,
    Column("collection", String(255), primary_key=True),
    Column("id", String(255), primary_key=True),
    Column("fields", JSON, nullable=False, default=dict),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
)


def create_all_tables(engine: Engine) -> None:
    """Create the document table if it does not exist yet."""

    log.info("Creating all tables")
    metadata.create_all(engine)
