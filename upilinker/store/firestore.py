"""Firestore-backed document store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import firebase_admin
from firebase_admin import firestore as firebase_firestore
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from starlette.concurrency import run_in_threadpool

from ..core.logging import get_logger
from ..models.payment import CREATED_AT_FIELD
from .base import (
    CollectionCallback,
    DocumentCallback,
    DocumentExistsError,
    DocumentNotFoundError,
    PreconditionFailedError,
    RequestStore,
    Snapshot,
    StoredDocument,
    StoreUnavailableError,
    Subscription,
)

logger = get_logger(__name__)


@contextmanager
def _translate_errors(path: str, doc_id: str = "") -> Iterator[None]:
    try:
        yield
    except (google_exceptions.NotFound, google_exceptions.PermissionDenied) as exc:
        raise DocumentNotFoundError(path, doc_id) from exc
    except google_exceptions.AlreadyExists as exc:
        raise DocumentExistsError(path, doc_id) from exc
    except (google_exceptions.GoogleAPIError, google_exceptions.RetryError) as exc:
        logger.error("firestore_call_failed", path=path, doc_id=doc_id, error=str(exc))
        raise StoreUnavailableError(str(exc)) from exc


def _to_stored(snapshot: Any) -> StoredDocument:
    return StoredDocument(id=snapshot.id, data=snapshot.to_dict() or {})


class FirestoreRequestStore(RequestStore):
    """Blocking Firestore client calls are moved off the event loop.

    Watches use the client's ``on_snapshot`` listeners, whose callbacks run on
    a Firestore-owned thread.
    """

    def __init__(self, client: firestore.Client) -> None:
        self._client = client

    @classmethod
    def from_firebase_app(cls, app: firebase_admin.App) -> "FirestoreRequestStore":
        return cls(firebase_firestore.client(app))

    async def create(self, path: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> StoredDocument:
        collection = self._client.collection(path)
        ref = collection.document(doc_id) if doc_id else collection.document()
        payload = dict(data)
        payload[CREATED_AT_FIELD] = firestore.SERVER_TIMESTAMP

        with _translate_errors(path, ref.id):
            result = await run_in_threadpool(ref.create, payload)

        stored = dict(data)
        stored[CREATED_AT_FIELD] = result.update_time
        return StoredDocument(id=ref.id, data=stored)

    async def get(self, path: str, doc_id: str) -> Optional[StoredDocument]:
        ref = self._client.collection(path).document(doc_id)
        with _translate_errors(path, doc_id):
            snapshot = await run_in_threadpool(ref.get)
        if not snapshot.exists:
            return None
        return _to_stored(snapshot)

    async def list(self, path: str) -> List[StoredDocument]:
        query = self._client.collection(path).order_by(CREATED_AT_FIELD, direction=firestore.Query.DESCENDING)
        with _translate_errors(path):
            snapshots = await run_in_threadpool(lambda: list(query.stream()))
        return [_to_stored(snapshot) for snapshot in snapshots]

    async def update(
        self,
        path: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        ref = self._client.collection(path).document(doc_id)
        if not expected:
            with _translate_errors(path, doc_id):
                await run_in_threadpool(ref.update, fields)
            return

        @firestore.transactional
        def compare_and_set(transaction: firestore.Transaction) -> None:
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise DocumentNotFoundError(path, doc_id)
            current = snapshot.to_dict() or {}
            for field, value in expected.items():
                if current.get(field) != value:
                    raise PreconditionFailedError(path, doc_id, field, current.get(field))
            transaction.update(ref, fields)

        with _translate_errors(path, doc_id):
            await run_in_threadpool(compare_and_set, self._client.transaction())

    async def delete(self, path: str, doc_id: str) -> None:
        ref = self._client.collection(path).document(doc_id)
        with _translate_errors(path, doc_id):
            await run_in_threadpool(ref.delete)

    def watch_document(self, path: str, doc_id: str, callback: DocumentCallback) -> Subscription:
        ref = self._client.collection(path).document(doc_id)

        def on_snapshot(snapshots: List[Any], changes: Any, read_time: Any) -> None:
            current = next((s for s in snapshots if s.exists), None)
            callback(Snapshot(data=_to_stored(current) if current else None))

        try:
            watch = ref.on_snapshot(on_snapshot)
        except google_exceptions.GoogleAPIError as exc:
            logger.error("firestore_watch_failed", path=path, doc_id=doc_id, error=str(exc))
            callback(Snapshot(error=StoreUnavailableError(str(exc))))
            return Subscription(lambda: None)
        return Subscription(watch.unsubscribe)

    def watch_collection(self, path: str, callback: CollectionCallback) -> Subscription:
        query = self._client.collection(path).order_by(CREATED_AT_FIELD, direction=firestore.Query.DESCENDING)

        def on_snapshot(snapshots: List[Any], changes: Any, read_time: Any) -> None:
            callback(Snapshot(data=[_to_stored(s) for s in snapshots]))

        try:
            watch = query.on_snapshot(on_snapshot)
        except google_exceptions.GoogleAPIError as exc:
            logger.error("firestore_watch_failed", path=path, error=str(exc))
            callback(Snapshot(error=StoreUnavailableError(str(exc))))
            return Subscription(lambda: None)
        return Subscription(watch.unsubscribe)

    def close(self) -> None:
        self._client.close()
