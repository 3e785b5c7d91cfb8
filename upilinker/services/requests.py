"""Payment request submission, retrieval and owner management."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from ..core.config import Settings
from ..core.logging import get_logger
from ..models.payment import LinkForm, PaymentRequest, PaymentRequestCreate, PaymentStatus
from ..store.base import (
    PUBLIC_COLLECTION,
    DocumentExistsError,
    DocumentNotFoundError,
    PreconditionFailedError,
    RequestStore,
    Snapshot,
    StoredDocument,
    Subscription,
    collection_for,
    owner_collection,
)
from ..utils.ids import idempotent_document_id
from .lifecycle import InvalidStatusTransition, is_expired, transition, utcnow
from .upi import build_upi_link, qr_image_url, share_text

logger = get_logger(__name__)


class PaymentRequestNotFound(Exception):
    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Payment request {request_id} not found")


class PaymentLinkExpired(Exception):
    def __init__(self, request: PaymentRequest) -> None:
        self.request = request
        super().__init__(f"Payment request {request.id} expired at {request.expires_at}")


@dataclass
class LinkPreview:
    upi_link: str
    qr_url: str
    share_text: str


@dataclass
class PayView:
    """What a payer sees for a request that is neither missing nor expired."""

    request: PaymentRequest
    amount: Optional[float]
    upi_link: str
    qr_url: str
    amount_required: bool
    share_text: str


def pay_path(request_id: str, public: bool, locale: Optional[str] = None) -> str:
    prefix = f"/{locale}" if locale else ""
    suffix = "?public=true" if public else ""
    return f"{prefix}/pay/{request_id}{suffix}"


class PaymentRequestService:
    def __init__(self, store: RequestStore, settings: Settings, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def qr_url(self, upi_link: str) -> str:
        return qr_image_url(upi_link, self.settings.qr_api_base, self.settings.qr_size)

    def preview(self, form: LinkForm) -> LinkPreview:
        """Widget flow: build the link and QR without storing anything."""
        link = build_upi_link(form.upi_id, form.name, form.amount, form.note)
        return LinkPreview(upi_link=link, qr_url=self.qr_url(link), share_text=share_text(form.name, form.amount))

    async def submit(
        self,
        form: PaymentRequestCreate,
        owner_id: Optional[str],
        idempotency_key: Optional[str] = None,
    ) -> Tuple[PaymentRequest, bool]:
        """Store a new pending request. Returns the request and whether it was newly created."""
        path = collection_for(owner_id)
        request = PaymentRequest(
            id="",
            owner_id=owner_id,
            payee_name=form.name,
            upi_id=form.upi_id,
            amount=form.amount,
            note=form.note,
            status=PaymentStatus.PENDING,
            expires_at=form.expires_at,
            upi_link=build_upi_link(form.upi_id, form.name, form.amount, form.note),
        )
        doc_id = idempotent_document_id(path, idempotency_key) if idempotency_key else None

        try:
            stored = await self.store.create(path, request.to_document(), doc_id=doc_id)
        except DocumentExistsError:
            existing = await self.store.get(path, doc_id)
            if existing is None:
                raise
            logger.info("payment_request_replayed", collection=path, request_id=existing.id)
            return PaymentRequest.from_document(existing.id, existing.data), False

        logger.info(
            "payment_request_created",
            collection=path,
            request_id=stored.id,
            public=owner_id is None,
            flexible=form.amount is None,
        )
        return PaymentRequest.from_document(stored.id, stored.data), True

    async def get(self, request_id: str, public: bool, owner_id: Optional[str]) -> PaymentRequest:
        path = self._lookup_path(request_id, public, owner_id)
        try:
            stored = await self.store.get(path, request_id)
        except DocumentNotFoundError as exc:
            # Denied reads look the same as missing documents.
            raise PaymentRequestNotFound(request_id) from exc
        if stored is None:
            raise PaymentRequestNotFound(request_id)
        return PaymentRequest.from_document(stored.id, stored.data)

    def is_expired(self, request: PaymentRequest) -> bool:
        return is_expired(request.expires_at, self.now())

    def render(self, request: PaymentRequest, custom_amount: Optional[float] = None) -> PayView:
        """Pick the link to show. Fixed-amount requests keep the stored link verbatim;
        flexible ones are rebuilt around the amount the payer typed in."""
        if not request.is_flexible:
            link = request.upi_link
            amount: Optional[float] = request.amount
        else:
            amount = custom_amount if custom_amount and custom_amount > 0 else None
            link = build_upi_link(request.upi_id, request.payee_name, amount, request.note)
        return PayView(
            request=request,
            amount=amount,
            upi_link=link,
            qr_url=self.qr_url(link),
            amount_required=amount is None,
            share_text=share_text(request.payee_name, request.amount),
        )

    async def pay_view(
        self,
        request_id: str,
        public: bool,
        owner_id: Optional[str],
        custom_amount: Optional[float] = None,
    ) -> PayView:
        request = await self.get(request_id, public, owner_id)
        if self.is_expired(request):
            raise PaymentLinkExpired(request)
        return self.render(request, custom_amount)

    async def history(self, owner_id: str) -> List[PaymentRequest]:
        docs = await self.store.list(owner_collection(owner_id))
        return [PaymentRequest.from_document(doc.id, doc.data) for doc in docs]

    async def mark(self, owner_id: str, request_id: str, status: PaymentStatus) -> PaymentRequest:
        path = owner_collection(owner_id)
        request = await self.get(request_id, public=False, owner_id=owner_id)
        new_status = transition(request.status, status)
        try:
            await self.store.update(
                path,
                request_id,
                {"status": new_status.value},
                expected={"status": request.status.value},
            )
        except DocumentNotFoundError as exc:
            raise PaymentRequestNotFound(request_id) from exc
        except PreconditionFailedError as exc:
            # Lost a race with another status change.
            logger.info("payment_request_status_conflict", request_id=request_id, actual=exc.actual)
            try:
                actual = PaymentStatus(exc.actual)
            except ValueError:
                actual = request.status
            raise InvalidStatusTransition(actual, status) from exc
        logger.info(
            "payment_request_status_changed",
            request_id=request_id,
            previous=request.status.value,
            status=new_status.value,
        )
        return request.model_copy(update={"status": new_status})

    async def delete(self, owner_id: str, request_id: str) -> None:
        await self.get(request_id, public=False, owner_id=owner_id)
        try:
            await self.store.delete(owner_collection(owner_id), request_id)
        except DocumentNotFoundError as exc:
            raise PaymentRequestNotFound(request_id) from exc
        logger.info("payment_request_deleted", request_id=request_id)

    def watch_history(
        self,
        owner_id: str,
        callback: Callable[[Snapshot[List[PaymentRequest]]], None],
    ) -> Subscription:
        callback(Snapshot.pending())

        def relay(snapshot: Snapshot[List[StoredDocument]]) -> None:
            if snapshot.error is not None or snapshot.data is None:
                callback(Snapshot(error=snapshot.error))
                return
            try:
                requests = [PaymentRequest.from_document(doc.id, doc.data) for doc in snapshot.data]
            except ValidationError as exc:
                callback(Snapshot(error=exc))
                return
            callback(Snapshot(data=requests))

        return self.store.watch_collection(owner_collection(owner_id), relay)

    def watch_request(
        self,
        request_id: str,
        public: bool,
        owner_id: Optional[str],
        callback: Callable[[Snapshot[PaymentRequest]], None],
    ) -> Subscription:
        callback(Snapshot.pending())
        try:
            path = self._lookup_path(request_id, public, owner_id)
        except PaymentRequestNotFound as exc:
            callback(Snapshot(error=exc))
            return Subscription(lambda: None)

        def relay(snapshot: Snapshot[StoredDocument]) -> None:
            if snapshot.error is not None or snapshot.data is None:
                callback(Snapshot(error=snapshot.error))
                return
            try:
                request = PaymentRequest.from_document(snapshot.data.id, snapshot.data.data)
            except ValidationError as exc:
                callback(Snapshot(error=exc))
                return
            callback(Snapshot(data=request))

        return self.store.watch_document(path, request_id, relay)

    @staticmethod
    def _lookup_path(request_id: str, public: bool, owner_id: Optional[str]) -> str:
        if public:
            return PUBLIC_COLLECTION
        if not owner_id:
            raise PaymentRequestNotFound(request_id)
        return owner_collection(owner_id)
