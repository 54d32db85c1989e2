from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

import pytest
from aiolimiter import AsyncLimiter
from google.api_core import exceptions as google_exceptions

from relinkpy.adapters.firestore import (
    FirestoreAPIError,
    FirestoreDocumentStore,
    FirestoreUnavailableError,
)
from relinkpy.config import FirestoreConfig, RateLimit
from relinkpy.domain.model import RunPhase
from relinkpy.domain.ports import FieldUpdate, RecordFilter
from relinkpy.domain.reconciliation import (
    PermanentStoreError,
    ReconciliationEngine,
    TransientStoreError,
    is_transient_error,
)
from relinkpy.domain.reconciliation.definitions import USER_COMPANIES
from tests.helpers.firestore import FakeFirestoreClient

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from google.cloud import firestore

    from relinkpy.config import EngineSettings

USERS = USER_COMPANIES.collection
TIMEOUT = 7.5


class CountingLimiter(AsyncLimiter):
    def __init__(self) -> None:
        super().__init__(100, 1)
        self.acquired = 0

    async def acquire(self, amount: float = 1) -> None:
        self.acquired += 1
        await super().acquire(amount)


def _make_store(
    client: FakeFirestoreClient,
    *,
    max_batch_writes: int = 500,
    ratelimit: RateLimit | None = None,
    limiter: AsyncLimiter | None = None,
) -> FirestoreDocumentStore:
    config = FirestoreConfig(
        project_id="demo",
        timeout_seconds=TIMEOUT,
        max_batch_writes=max_batch_writes,
        ratelimit=ratelimit,
    )
    return FirestoreDocumentStore(
        config=config,
        client_factory=lambda _config: cast("firestore.AsyncClient", client),
        limiter=limiter,
    )


def _run[T](operation: Callable[[], Awaitable[T]]) -> T:
    return asyncio.run(operation())


def test_scan_page_orders_by_document_id_and_starts_after_cursor() -> None:
    client = FakeFirestoreClient()
    client.seed(USERS, {"u3": {}, "u1": {"license_key": "LIC1"}, "u2": {}})
    store = _make_store(client)

    first = _run(lambda: store.scan_page(USERS, page_size=2))
    second = _run(lambda: store.scan_page(USERS, page_size=2, cursor=first.next_cursor))

    assert [record.id for record in first.records] == ["u1", "u2"]
    assert first.records[0].fields == {"license_key": "LIC1"}
    assert first.next_cursor == "u2"
    assert [record.id for record in second.records] == ["u3"]
    assert second.next_cursor is None
    assert client.queries[0].ordered_by == "__name__"
    assert client.queries[1].after == "u2"
    assert all(options == {"timeout": TIMEOUT} for _, options in client.calls)


def test_probe_one_filters_by_equality_and_not_null() -> None:
    client = FakeFirestoreClient()
    client.seed(
        USERS,
        {
            "u1": {"license_key": "LIC1"},
            "u2": {"license_key": "LIC1", "company_id": "company-1"},
            "u3": {"license_key": "LIC2", "company_id": "company-2"},
        },
    )
    store = _make_store(client)
    record_filter = RecordFilter(equals={"license_key": "LIC1"}, not_null=("company_id",))

    found = _run(lambda: store.probe_one(USERS, record_filter))
    missing = _run(lambda: store.probe_one(USERS, RecordFilter(equals={"license_key": "LIC9"})))

    assert found is not None
    assert found.id == "u2"
    assert missing is None
    query = client.queries[0]
    assert query.count == 1
    assert [(item.field_path, item.op_string) for item in query.filters] == [
        ("license_key", "=="),
        ("company_id", "!="),
    ]


def test_get_record_returns_none_for_missing_documents() -> None:
    client = FakeFirestoreClient()
    client.seed(USERS, {"seller-0000001": {"company_id": "company-A"}})
    store = _make_store(client)

    found = _run(lambda: store.get_record(USERS, "seller-0000001"))
    missing = _run(lambda: store.get_record(USERS, "nobody"))

    assert found is not None
    assert found.fields == {"company_id": "company-A"}
    assert missing is None


def test_create_record_returns_generated_id() -> None:
    client = FakeFirestoreClient()
    store = _make_store(client)
    created_at = datetime(2024, 5, 1, tzinfo=UTC)

    record_id = _run(lambda: store.create_record("companies", {"created_at": created_at}))

    assert client.collections["companies"][record_id] == {"created_at": created_at}


def test_commit_batch_updates_existing_documents_together() -> None:
    client = FakeFirestoreClient()
    client.seed(USERS, {"u1": {"license_key": "LIC1"}, "u2": {"license_key": "LIC1"}})
    store = _make_store(client)
    updates = [
        FieldUpdate(collection=USERS, record_id=record_id, fields={"company_id": "company-1"})
        for record_id in ("u1", "u2")
    ]

    _run(lambda: store.commit_batch(updates))

    assert len(client.commits) == 1
    assert client.collections[USERS]["u1"] == {"license_key": "LIC1", "company_id": "company-1"}
    assert client.collections[USERS]["u2"]["company_id"] == "company-1"


def test_commit_batch_with_a_missing_document_writes_nothing() -> None:
    client = FakeFirestoreClient()
    client.seed(USERS, {"u1": {}})
    store = _make_store(client)
    updates = [
        FieldUpdate(collection=USERS, record_id="u1", fields={"company_id": "company-1"}),
        FieldUpdate(collection=USERS, record_id="gone", fields={"company_id": "company-1"}),
    ]

    with pytest.raises(FirestoreAPIError) as exc:
        _run(lambda: store.commit_batch(updates))

    assert exc.value.code == 404
    assert isinstance(exc.value, PermanentStoreError)
    assert client.collections[USERS]["u1"] == {}


def test_commit_batch_rejects_oversized_batches_without_a_request() -> None:
    client = FakeFirestoreClient()
    store = _make_store(client, max_batch_writes=1)
    updates = [
        FieldUpdate(collection=USERS, record_id=f"u{index}", fields={"company_id": "c"})
        for index in range(2)
    ]

    with pytest.raises(FirestoreAPIError, match="exceeds the limit of 1"):
        _run(lambda: store.commit_batch(updates))

    assert client.calls == []


@pytest.mark.parametrize(
    "error",
    [
        google_exceptions.ServiceUnavailable("backend unavailable"),
        google_exceptions.DeadlineExceeded("deadline"),
        google_exceptions.Aborted("contention"),
        google_exceptions.ResourceExhausted("quota"),
    ],
)
def test_unavailability_is_transient(error: Exception) -> None:
    client = FakeFirestoreClient()
    client.fail_next("get", error)
    store = _make_store(client)

    with pytest.raises(FirestoreUnavailableError) as exc:
        _run(lambda: store.get_record(USERS, "u1"))

    assert isinstance(exc.value, TransientStoreError)
    assert is_transient_error(exc.value)
    assert exc.value.__cause__ is error


def test_rejected_requests_are_permanent() -> None:
    client = FakeFirestoreClient()
    client.fail_next("query", google_exceptions.PermissionDenied("missing IAM role"))
    store = _make_store(client)

    with pytest.raises(FirestoreAPIError, match="missing IAM role") as exc:
        _run(lambda: store.scan_page(USERS, page_size=10))

    assert exc.value.code == 403
    assert not is_transient_error(exc.value)


def test_every_call_waits_for_the_rate_limiter() -> None:
    client = FakeFirestoreClient()
    client.seed(USERS, {"u1": {}})
    limiter = CountingLimiter()
    store = _make_store(client, limiter=limiter)

    async def exercise() -> None:
        await store.scan_page(USERS, page_size=10)
        await store.get_record(USERS, "u1")
        await store.create_record("companies", {})
        await store.commit_batch(
            [FieldUpdate(collection=USERS, record_id="u1", fields={"company_id": "c"})]
        )

    _run(exercise)

    assert limiter.acquired == 4
    assert len(client.calls) == 4


def test_rate_limit_config_builds_a_limiter() -> None:
    store = _make_store(FakeFirestoreClient(), ratelimit=RateLimit(max_calls=5, per_seconds=2.0))
    unlimited = _make_store(FakeFirestoreClient())

    assert store.limiter is not None
    assert store.limiter.max_rate == 5
    assert store.limiter.time_period == 2.0
    assert unlimited.limiter is None


def test_client_is_created_once_on_first_use() -> None:
    created: list[FirestoreConfig] = []
    client = FakeFirestoreClient()

    def factory(config: FirestoreConfig) -> firestore.AsyncClient:
        created.append(config)
        return cast("firestore.AsyncClient", client)

    store = FirestoreDocumentStore(
        config=FirestoreConfig(project_id="demo"), client_factory=factory
    )
    assert created == []

    _run(lambda: store.get_record(USERS, "u1"))
    _run(lambda: store.get_record(USERS, "u2"))

    assert [config.project_id for config in created] == ["demo"]


def test_engine_links_users_through_the_firestore_store(settings: EngineSettings) -> None:
    client = FakeFirestoreClient()
    client.seed(USERS, {"u1": {"license_key": "LIC1"}, "u2": {"license_key": "LIC1"}})
    store = _make_store(client)
    engine = ReconciliationEngine(store=store, definition=USER_COMPANIES, settings=settings)

    progress = asyncio.run(engine.start())

    assert progress.phase is RunPhase.COMPLETED
    assert progress.targets_created == 1
    (company_id,) = client.collections["companies"]
    assert client.collections[USERS]["u1"]["company_id"] == company_id
    assert client.collections[USERS]["u2"]["company_id"] == company_id
