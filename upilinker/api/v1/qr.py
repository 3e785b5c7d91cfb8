"""QR image relay endpoint."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ...api.deps import get_qr_service
from ...services.qr import MAX_SIZE, MIN_SIZE, QRService

router = APIRouter()


@router.get("/qr", response_class=Response)
async def qr_image(
    data: str = Query(min_length=1, max_length=2048),
    size: Optional[int] = Query(default=None, ge=MIN_SIZE, le=MAX_SIZE),
    qr_service: QRService = Depends(get_qr_service),
) -> Response:
    image = await qr_service.fetch(data, size)
    return Response(
        content=image.content,
        media_type=image.media_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )
