"""Process-local document store for development and tests."""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, DefaultDict, Dict, List, Optional, Tuple

from ..core.logging import get_logger
from ..models.payment import CREATED_AT_FIELD
from ..utils.ids import generate_document_id
from .base import (
    CollectionCallback,
    DocumentCallback,
    DocumentExistsError,
    DocumentNotFoundError,
    PreconditionFailedError,
    RequestStore,
    Snapshot,
    StoredDocument,
    Subscription,
)

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryRequestStore(RequestStore):
    """Dict-backed store with synchronous listener fan-out.

    Listeners run on the thread that performed the write, after the lock is
    released, so a callback may read the store again.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._lock = threading.RLock()
        self._collections: DefaultDict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._doc_listeners: DefaultDict[Tuple[str, str], List[DocumentCallback]] = defaultdict(list)
        self._collection_listeners: DefaultDict[str, List[CollectionCallback]] = defaultdict(list)

    async def create(self, path: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> StoredDocument:
        with self._lock:
            docs = self._collections[path]
            doc_id = doc_id or generate_document_id()
            if doc_id in docs:
                raise DocumentExistsError(path, doc_id)
            stored = copy.deepcopy(data)
            stored[CREATED_AT_FIELD] = self._clock()
            docs[doc_id] = stored
        self._notify(path, doc_id)
        return StoredDocument(id=doc_id, data=copy.deepcopy(stored))

    async def get(self, path: str, doc_id: str) -> Optional[StoredDocument]:
        return self._read(path, doc_id)

    async def list(self, path: str) -> List[StoredDocument]:
        return self._listing(path)

    async def update(
        self,
        path: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._lock:
            docs = self._collections[path]
            if doc_id not in docs:
                raise DocumentNotFoundError(path, doc_id)
            current = docs[doc_id]
            for field, value in (expected or {}).items():
                if current.get(field) != value:
                    raise PreconditionFailedError(path, doc_id, field, current.get(field))
            current.update(copy.deepcopy(fields))
        self._notify(path, doc_id)

    async def delete(self, path: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collections[path].pop(doc_id, None)
        if removed is not None:
            self._notify(path, doc_id)

    def watch_document(self, path: str, doc_id: str, callback: DocumentCallback) -> Subscription:
        key = (path, doc_id)
        with self._lock:
            self._doc_listeners[key].append(callback)

        def cancel() -> None:
            with self._lock:
                listeners = self._doc_listeners.get(key, [])
                if callback in listeners:
                    listeners.remove(callback)

        callback(Snapshot(data=self._read(path, doc_id)))
        return Subscription(cancel)

    def watch_collection(self, path: str, callback: CollectionCallback) -> Subscription:
        with self._lock:
            self._collection_listeners[path].append(callback)

        def cancel() -> None:
            with self._lock:
                listeners = self._collection_listeners.get(path, [])
                if callback in listeners:
                    listeners.remove(callback)

        callback(Snapshot(data=self._listing(path)))
        return Subscription(cancel)

    def _read(self, path: str, doc_id: str) -> Optional[StoredDocument]:
        with self._lock:
            data = self._collections.get(path, {}).get(doc_id)
            if data is None:
                return None
            return StoredDocument(id=doc_id, data=copy.deepcopy(data))

    def _listing(self, path: str) -> List[StoredDocument]:
        with self._lock:
            docs = [
                StoredDocument(id=doc_id, data=copy.deepcopy(data))
                for doc_id, data in self._collections.get(path, {}).items()
            ]
        docs.reverse()
        docs.sort(key=lambda doc: doc.data.get(CREATED_AT_FIELD) or _EPOCH, reverse=True)
        return docs

    def _notify(self, path: str, doc_id: str) -> None:
        with self._lock:
            doc_listeners = list(self._doc_listeners.get((path, doc_id), []))
            collection_listeners = list(self._collection_listeners.get(path, []))

        if doc_listeners:
            snapshot = Snapshot(data=self._read(path, doc_id))
            for listener in doc_listeners:
                self._deliver(listener, snapshot)
        if collection_listeners:
            snapshot = Snapshot(data=self._listing(path))
            for listener in collection_listeners:
                self._deliver(listener, snapshot)

    def _deliver(self, listener: Callable[[Snapshot[Any]], None], snapshot: Snapshot[Any]) -> None:
        try:
            listener(snapshot)
        except Exception as exc:
            logger.error("store_listener_failed", error=str(exc), exc_info=exc)
