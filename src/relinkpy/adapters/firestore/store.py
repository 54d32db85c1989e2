"""Document store backed by Cloud Firestore through the async client library."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from aiolimiter import AsyncLimiter
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath
from google.oauth2 import service_account

from relinkpy.config.firestore import FirestoreConfig, get_firestore_config
from relinkpy.domain.model import Record
from relinkpy.domain.ports.store import DocumentStore, Page
from relinkpy.domain.reconciliation.errors import PermanentStoreError, TransientStoreError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence

    from google.cloud.firestore_v1.base_document import DocumentSnapshot

    from relinkpy.domain.ports.store import Cursor, FieldUpdate, RecordFilter

log = getLogger(__name__)

_DOCUMENT_ID = FieldPath.document_id()
_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.Aborted,
    google_exceptions.ResourceExhausted,
    google_exceptions.InternalServerError,
    google_exceptions.RetryError,
)


class FirestoreAPIError(PermanentStoreError):
    """Firestore rejected a request in a way retrying will not fix."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class FirestoreUnavailableError(TransientStoreError):
    """Firestore could not be reached or asked the client to back off."""


def create_client(config: FirestoreConfig) -> firestore.AsyncClient:
    credentials = None
    if config.credentials_file is not None:
        credentials = service_account.Credentials.from_service_account_file(
            str(config.credentials_file)
        )
    return firestore.AsyncClient(
        project=config.project_id,
        database=config.database,
        credentials=credentials,
    )


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except _TRANSIENT_ERRORS as exc:
        log.warning("Firestore unavailable while %s: %s", action, exc)
        raise FirestoreUnavailableError(f"Firestore unavailable while {action}: {exc}") from exc
    except google_exceptions.GoogleAPICallError as exc:
        raise FirestoreAPIError(f"Firestore error while {action}: {exc}", code=exc.code) from exc


def _to_record(snapshot: DocumentSnapshot) -> Record:
    return Record(id=snapshot.id, fields=snapshot.to_dict() or {})


@dataclass(slots=True)
class FirestoreDocumentStore:
    """Async :class:`DocumentStore` over a Firestore database.

    Every request passes through the optional rate limiter and carries the
    configured timeout. Unavailability, deadline and contention errors surface
    as :class:`FirestoreUnavailableError` (transient); every other API error as
    :class:`FirestoreAPIError` (permanent).
    """

    config: FirestoreConfig = field(default_factory=get_firestore_config)
    client_factory: Callable[[FirestoreConfig], firestore.AsyncClient] = field(
        default=create_client
    )
    limiter: AsyncLimiter | None = None
    _client: firestore.AsyncClient | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        ratelimit = self.config.ratelimit
        if self.limiter is None and ratelimit is not None:
            self.limiter = AsyncLimiter(ratelimit.max_calls, ratelimit.per_seconds)

    @property
    def max_batch_writes(self) -> int:
        return self.config.max_batch_writes

    @property
    def client(self) -> firestore.AsyncClient:
        if self._client is None:
            self._client = self.client_factory(self.config)
        return self._client

    async def scan_page(
        self,
        collection: str,
        *,
        page_size: int,
        cursor: Cursor | None = None,
    ) -> Page:
        query = self.client.collection(collection).order_by(_DOCUMENT_ID).limit(page_size)
        if cursor is not None:
            query = query.start_after({_DOCUMENT_ID: cursor})
        snapshots = await self._call(
            f"scanning {collection}",
            lambda: query.get(timeout=self.config.timeout_seconds),
        )
        records = tuple(_to_record(snapshot) for snapshot in snapshots)
        next_cursor = records[-1].id if len(records) >= page_size else None
        return Page(records=records, next_cursor=next_cursor)

    async def probe_one(self, collection: str, record_filter: RecordFilter) -> Record | None:
        query = self.client.collection(collection).limit(1)
        for name, value in record_filter.equals.items():
            query = query.where(filter=FieldFilter(name, "==", value))
        for name in record_filter.not_null:
            query = query.where(filter=FieldFilter(name, "!=", None))
        snapshots = await self._call(
            f"probing {collection}",
            lambda: query.get(timeout=self.config.timeout_seconds),
        )
        return _to_record(snapshots[0]) if snapshots else None

    async def get_record(self, collection: str, record_id: str) -> Record | None:
        reference = self.client.collection(collection).document(record_id)
        snapshot = await self._call(
            f"reading {collection}/{record_id}",
            lambda: reference.get(timeout=self.config.timeout_seconds),
        )
        if not snapshot.exists:
            return None
        return _to_record(snapshot)

    async def create_record(self, collection: str, fields: Mapping[str, object]) -> str:
        _, reference = await self._call(
            f"creating a record in {collection}",
            lambda: self.client.collection(collection).add(
                dict(fields), timeout=self.config.timeout_seconds
            ),
        )
        return reference.id

    async def commit_batch(self, updates: Sequence[FieldUpdate]) -> None:
        """Apply every update in one batched write; missing records fail the batch."""

        if not updates:
            return
        if len(updates) > self.max_batch_writes:
            raise FirestoreAPIError(
                f"Batch of {len(updates)} writes exceeds the limit of {self.max_batch_writes}",
                code=400,
            )
        batch = self.client.batch()
        for update in updates:
            reference = self.client.collection(update.collection).document(update.record_id)
            batch.update(reference, dict(update.fields))
        await self._call(
            "committing a batch",
            lambda: batch.commit(timeout=self.config.timeout_seconds),
        )
        log.debug("Committed %s writes", len(updates))

    async def _call[T](self, action: str, operation: Callable[[], Awaitable[T]]) -> T:
        with _translate_errors(action):
            if self.limiter is None:
                return await operation()
            async with self.limiter:
                return await operation()


if TYPE_CHECKING:
    _store_check: DocumentStore = FirestoreDocumentStore()
