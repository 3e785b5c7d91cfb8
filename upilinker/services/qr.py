"""Relay for the third-party QR rendering endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.config import Settings
from ..core.logging import get_logger

logger = get_logger(__name__)

MIN_SIZE = 64
MAX_SIZE = 1024


class QRUpstreamError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass
class QRImage:
    content: bytes
    media_type: str


class QRService:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.http_client = http_client

    async def fetch(self, data: str, size: Optional[int] = None) -> QRImage:
        size = min(max(size or self.settings.qr_size, MIN_SIZE), MAX_SIZE)
        params = {"size": f"{size}x{size}", "data": data}
        try:
            response = await self.http_client.get(
                self.settings.qr_api_base,
                params=params,
                timeout=self.settings.qr_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("qr_upstream_error", status_code=exc.response.status_code)
            raise QRUpstreamError("QR renderer returned an error", exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.warning("qr_upstream_error", error=str(exc))
            raise QRUpstreamError("QR renderer is unreachable") from exc

        media_type = response.headers.get("content-type", "image/png").split(";")[0]
        return QRImage(content=response.content, media_type=media_type)
