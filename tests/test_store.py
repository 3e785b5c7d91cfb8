import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from google.api_core import exceptions as google_exceptions

from upilinker.store.base import (
    PUBLIC_COLLECTION,
    DocumentExistsError,
    DocumentNotFoundError,
    PreconditionFailedError,
    StoreUnavailableError,
    collection_for,
    owner_collection,
)
from upilinker.store.firestore import _translate_errors
from upilinker.store.memory import InMemoryRequestStore
from upilinker.utils.ids import generate_document_id, idempotent_document_id

PATH = owner_collection("U1")


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture()
def store():
    return InMemoryRequestStore(clock=TickingClock())


def test_collection_paths():
    assert collection_for(None) == PUBLIC_COLLECTION == "publicPaymentRequests"
    assert collection_for("U1") == "users/U1/paymentRequests"


def test_document_ids():
    assert len(generate_document_id()) == 20
    assert generate_document_id() != generate_document_id()
    assert idempotent_document_id(PATH, "k") == idempotent_document_id(PATH, "k")
    assert idempotent_document_id(PATH, "k") != idempotent_document_id(PUBLIC_COLLECTION, "k")


def test_create_stamps_timestamp_and_rejects_duplicates(store):
    async def scenario():
        doc = await store.create(PATH, {"name": "Jane"}, doc_id="abc")
        assert doc.data["timestamp"] == datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        with pytest.raises(DocumentExistsError):
            await store.create(PATH, {"name": "Other"}, doc_id="abc")
        assert (await store.get(PATH, "abc")).data["name"] == "Jane"

    asyncio.run(scenario())


def test_list_update_delete(store):
    async def scenario():
        first = await store.create(PATH, {"status": "pending"})
        second = await store.create(PATH, {"status": "pending"})
        assert [d.id for d in await store.list(PATH)] == [second.id, first.id]

        await store.update(PATH, first.id, {"status": "completed"})
        assert (await store.get(PATH, first.id)).data["status"] == "completed"
        with pytest.raises(DocumentNotFoundError):
            await store.update(PATH, "missing", {"status": "failed"})

        await store.delete(PATH, first.id)
        assert await store.get(PATH, first.id) is None
        assert await store.list(PUBLIC_COLLECTION) == []

    asyncio.run(scenario())


def test_conditional_update_checks_current_value(store):
    async def scenario():
        doc = await store.create(PATH, {"status": "pending"})
        await store.update(PATH, doc.id, {"status": "completed"}, expected={"status": "pending"})

        with pytest.raises(PreconditionFailedError) as excinfo:
            await store.update(PATH, doc.id, {"status": "failed"}, expected={"status": "pending"})
        assert excinfo.value.field == "status"
        assert excinfo.value.actual == "completed"
        assert (await store.get(PATH, doc.id)).data["status"] == "completed"

        with pytest.raises(DocumentNotFoundError):
            await store.update(PATH, "missing", {"status": "failed"}, expected={"status": "pending"})

    asyncio.run(scenario())


def test_returned_documents_are_copies(store):
    async def scenario():
        doc = await store.create(PATH, {"name": "Jane"}, doc_id="abc")
        doc.data["name"] = "Mallory"
        assert (await store.get(PATH, "abc")).data["name"] == "Jane"

    asyncio.run(scenario())


def test_watch_document_until_cancelled(store):
    snapshots = []
    subscription = store.watch_document(PATH, "abc", snapshots.append)
    assert snapshots[0].data is None

    async def scenario():
        await store.create(PATH, {"status": "pending"}, doc_id="abc")
        await store.update(PATH, "abc", {"status": "completed"})
        subscription.cancel()
        subscription.cancel()
        await store.delete(PATH, "abc")

    asyncio.run(scenario())
    assert [s.data.data["status"] for s in snapshots[1:]] == ["pending", "completed"]
    assert subscription.cancelled is True


def test_watch_collection_sees_deletes(store):
    snapshots = []

    async def scenario():
        doc = await store.create(PATH, {"status": "pending"})
        store.watch_collection(PATH, snapshots.append)
        await store.delete(PATH, doc.id)

    asyncio.run(scenario())
    assert [len(s.data) for s in snapshots] == [1, 0]


def test_failing_listener_does_not_break_writes(store):
    def broken(snapshot):
        if snapshot.data is not None:
            raise RuntimeError("boom")

    store.watch_document(PATH, "abc", broken)
    asyncio.run(store.create(PATH, {"status": "pending"}, doc_id="abc"))
    assert asyncio.run(store.get(PATH, "abc")) is not None


@pytest.mark.parametrize(
    "raised, expected",
    [
        (google_exceptions.NotFound("gone"), DocumentNotFoundError),
        (google_exceptions.PermissionDenied("rules"), DocumentNotFoundError),
        (google_exceptions.AlreadyExists("dup"), DocumentExistsError),
        (google_exceptions.ServiceUnavailable("down"), StoreUnavailableError),
        (google_exceptions.DeadlineExceeded("slow"), StoreUnavailableError),
    ],
)
def test_firestore_errors_are_translated(raised, expected):
    with pytest.raises(expected):
        with _translate_errors(PATH, "abc"):
            raise raised
