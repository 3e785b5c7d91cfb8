"""Payment request submission, pay view and owner history endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel

from ...api.deps import get_current_user, get_idempotency_key, get_optional_user, get_request_service
from ...api.errors import APIError
from ...api.streaming import event_stream_response, snapshot_events
from ...core.security import AuthenticatedUser
from ...models.payment import PaymentRequest, PaymentRequestCreate, PaymentStatus
from ...services.lifecycle import ViewState, resolve_view_state
from ...services.requests import PaymentRequestService, PayView, pay_path
from ...store.base import Snapshot

router = APIRouter(prefix="/payment-requests")


class PaymentRequestOut(BaseModel):
    id: str
    owner_id: Optional[str] = None
    name: str
    upi_id: str
    amount: Optional[float] = None
    note: Optional[str] = None
    status: PaymentStatus
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    upi_link: str
    public: bool
    expired: bool

    @classmethod
    def from_domain(cls, request: PaymentRequest, expired: bool) -> "PaymentRequestOut":
        return cls(
            id=request.id,
            owner_id=request.owner_id,
            name=request.payee_name,
            upi_id=request.upi_id,
            amount=request.amount,
            note=request.note,
            status=request.status,
            created_at=request.created_at,
            expires_at=request.expires_at,
            upi_link=request.upi_link,
            public=request.is_public,
            expired=expired,
        )


class SubmissionResponse(BaseModel):
    request: PaymentRequestOut
    pay_path: str
    qr_url: str


class PayViewResponse(BaseModel):
    request: PaymentRequestOut
    amount: Optional[float] = None
    upi_link: str
    qr_url: str
    amount_required: bool
    share_text: str
    pay_path: str


class HistoryResponse(BaseModel):
    requests: List[PaymentRequestOut]


def _view_response(view: PayView) -> PayViewResponse:
    request = view.request
    return PayViewResponse(
        request=PaymentRequestOut.from_domain(request, expired=False),
        amount=view.amount,
        upi_link=view.upi_link,
        qr_url=view.qr_url,
        amount_required=view.amount_required,
        share_text=view.share_text,
        pay_path=pay_path(request.id, request.is_public),
    )


def _lookup_owner(public: bool, user: Optional[AuthenticatedUser]) -> Optional[str]:
    if public:
        return None
    if user is None:
        raise APIError(code="AUTH_REQUIRED", message="Sign in to view this payment request", status_code=401)
    return user.uid


def _error_text(snapshot: Snapshot[Any]) -> Optional[str]:
    return type(snapshot.error).__name__ if snapshot.error is not None else None


@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_payment_request(
    payload: PaymentRequestCreate,
    response: Response,
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    service: PaymentRequestService = Depends(get_request_service),
) -> SubmissionResponse:
    """Store a pending request under the signed-in owner, or publicly for anonymous callers."""
    request, created = await service.submit(payload, user.uid if user else None, idempotency_key)
    if not created:
        response.status_code = status.HTTP_200_OK
    return SubmissionResponse(
        request=PaymentRequestOut.from_domain(request, service.is_expired(request)),
        pay_path=pay_path(request.id, request.is_public),
        qr_url=service.qr_url(request.upi_link),
    )


@router.get("", response_model=HistoryResponse)
async def list_payment_requests(
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentRequestService = Depends(get_request_service),
) -> HistoryResponse:
    requests = await service.history(user.uid)
    return HistoryResponse(
        requests=[PaymentRequestOut.from_domain(r, service.is_expired(r)) for r in requests]
    )


@router.get("/stream")
async def stream_payment_requests(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentRequestService = Depends(get_request_service),
):
    """Live owner history as Server-Sent Events."""

    def encode(snapshot: Snapshot[List[PaymentRequest]]) -> Dict[str, Any]:
        data = None
        if snapshot.data is not None:
            data = [PaymentRequestOut.from_domain(r, service.is_expired(r)).model_dump() for r in snapshot.data]
        return {"loading": snapshot.loading, "error": _error_text(snapshot), "data": data}

    events = snapshot_events(
        request,
        lambda push: service.watch_history(user.uid, push),
        encode,
        request.app.state.settings.stream_keepalive_seconds,
    )
    return event_stream_response(events)


@router.get("/{request_id}", response_model=PayViewResponse)
async def get_payment_request(
    request_id: str,
    public: bool = Query(default=False),
    amount: Optional[float] = Query(default=None, gt=0, allow_inf_nan=False),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    service: PaymentRequestService = Depends(get_request_service),
) -> PayViewResponse:
    """Pay view: 404 when absent or not readable, 410 once expired."""
    owner_id = _lookup_owner(public, user)
    view = await service.pay_view(request_id, public, owner_id, custom_amount=amount)
    return _view_response(view)


@router.get("/{request_id}/stream")
async def stream_payment_request(
    request: Request,
    request_id: str,
    public: bool = Query(default=False),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    service: PaymentRequestService = Depends(get_request_service),
):
    """Live pay view as Server-Sent Events, each frame carrying the resolved view state."""
    owner_id = _lookup_owner(public, user)

    def encode(snapshot: Snapshot[PaymentRequest]) -> Dict[str, Any]:
        state = resolve_view_state(snapshot, service.now())
        data = None
        if state is ViewState.READY and snapshot.data is not None:
            data = _view_response(service.render(snapshot.data)).model_dump()
        return {"loading": snapshot.loading, "error": _error_text(snapshot), "state": state.value, "data": data}

    events = snapshot_events(
        request,
        lambda push: service.watch_request(request_id, public, owner_id, push),
        encode,
        request.app.state.settings.stream_keepalive_seconds,
    )
    return event_stream_response(events)


@router.post("/{request_id}/complete", response_model=PaymentRequestOut)
async def mark_completed(
    request_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentRequestService = Depends(get_request_service),
) -> PaymentRequestOut:
    updated = await service.mark(user.uid, request_id, PaymentStatus.COMPLETED)
    return PaymentRequestOut.from_domain(updated, service.is_expired(updated))


@router.post("/{request_id}/fail", response_model=PaymentRequestOut)
async def mark_failed(
    request_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentRequestService = Depends(get_request_service),
) -> PaymentRequestOut:
    updated = await service.mark(user.uid, request_id, PaymentStatus.FAILED)
    return PaymentRequestOut.from_domain(updated, service.is_expired(updated))


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment_request(
    request_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentRequestService = Depends(get_request_service),
) -> Response:
    await service.delete(user.uid, request_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
