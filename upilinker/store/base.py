"""Document store contract shared by the Firestore and in-memory backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")

PUBLIC_COLLECTION = "publicPaymentRequests"


def owner_collection(owner_id: str) -> str:
    return f"users/{owner_id}/paymentRequests"


def collection_for(owner_id: Optional[str]) -> str:
    """Signed-in submissions live under the owner, anonymous ones are public."""
    if owner_id:
        return owner_collection(owner_id)
    return PUBLIC_COLLECTION


class StoreError(Exception):
    """Base class for document store failures."""


class StoreUnavailableError(StoreError):
    """The store could not be reached or refused to serve the call."""


class DocumentNotFoundError(StoreError):
    """The document is absent, or reading it was denied."""

    def __init__(self, path: str, doc_id: str) -> None:
        self.path = path
        self.doc_id = doc_id
        super().__init__(f"{path}/{doc_id}")


class PreconditionFailedError(StoreError):
    """A conditional write found the document in a different state."""

    def __init__(self, path: str, doc_id: str, field: str, actual: Any) -> None:
        self.path = path
        self.doc_id = doc_id
        self.field = field
        self.actual = actual
        super().__init__(f"{path}/{doc_id}: {field}={actual!r}")


class DocumentExistsError(StoreError):
    def __init__(self, path: str, doc_id: str) -> None:
        self.path = path
        self.doc_id = doc_id
        super().__init__(f"{path}/{doc_id}")


@dataclass
class StoredDocument:
    id: str
    data: Dict[str, Any]


@dataclass
class Snapshot(Generic[T]):
    """One delivery of a live subscription."""

    data: Optional[T] = None
    error: Optional[Exception] = None
    loading: bool = False

    @classmethod
    def pending(cls) -> "Snapshot[T]":
        return cls(loading=True)


DocumentCallback = Callable[[Snapshot[StoredDocument]], None]
CollectionCallback = Callable[[Snapshot[List[StoredDocument]]], None]


@dataclass
class Subscription:
    """Cancellation handle returned by the watch methods. Idempotent."""

    _cancel: Callable[[], None]
    cancelled: bool = field(default=False, init=False)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._cancel()


class RequestStore(ABC):
    """Async CRUD plus push-based watches over slash-separated collection paths."""

    @abstractmethod
    async def create(self, path: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> StoredDocument:
        """Insert a document, stamping the creation time. Raises DocumentExistsError."""
        raise NotImplementedError()

    @abstractmethod
    async def get(self, path: str, doc_id: str) -> Optional[StoredDocument]:
        raise NotImplementedError()

    @abstractmethod
    async def list(self, path: str) -> List[StoredDocument]:
        """All documents in a collection, newest first."""
        raise NotImplementedError()

    @abstractmethod
    async def update(
        self,
        path: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Merge fields into an existing document. Raises DocumentNotFoundError.

        With ``expected``, the write is applied atomically only while each
        listed field still holds the given value, else PreconditionFailedError.
        """
        raise NotImplementedError()

    @abstractmethod
    async def delete(self, path: str, doc_id: str) -> None:
        raise NotImplementedError()

    @abstractmethod
    def watch_document(self, path: str, doc_id: str, callback: DocumentCallback) -> Subscription:
        """Deliver the current document (data=None when absent) and every later change."""
        raise NotImplementedError()

    @abstractmethod
    def watch_collection(self, path: str, callback: CollectionCallback) -> Subscription:
        """Deliver the current listing (newest first) and every later change."""
        raise NotImplementedError()

    def close(self) -> None:
        """Release client resources."""
