"""UPI deep link endpoint for the embeddable widget."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...api.deps import get_request_service
from ...models.payment import LinkForm
from ...services.requests import PaymentRequestService

router = APIRouter()


class LinkResponse(BaseModel):
    upi_link: str
    qr_url: str
    share_text: str


@router.post("/links", response_model=LinkResponse)
async def create_link(
    payload: LinkForm,
    service: PaymentRequestService = Depends(get_request_service),
) -> LinkResponse:
    """Build a link and QR for the given payee without storing a request."""
    preview = service.preview(payload)
    return LinkResponse(upi_link=preview.upi_link, qr_url=preview.qr_url, share_text=preview.share_text)
