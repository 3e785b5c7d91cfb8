"""Request-scoped dependencies"""
from typing import Optional

from fastapi import Depends, Header, Request

from ..core.security import AuthenticatedUser, TokenVerifier, extract_bearer
from ..services.qr import QRService
from ..services.requests import PaymentRequestService
from .errors import APIError


def get_request_service(request: Request) -> PaymentRequestService:
    """Get payment request service from app state"""
    return request.app.state.request_service


def get_qr_service(request: Request) -> QRService:
    """Get QR relay service from app state"""
    return request.app.state.qr_service


def get_token_verifier(request: Request) -> TokenVerifier:
    """Get session token verifier from app state"""
    return request.app.state.token_verifier


def _session_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    token = extract_bearer(authorization)
    if token:
        return token
    cookie_name = request.app.state.settings.session_cookie_name
    return request.cookies.get(cookie_name) or None


async def get_optional_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Optional[AuthenticatedUser]:
    """Signed-in user, or None for anonymous callers and unusable tokens"""
    token = _session_token(request, authorization)
    if not token:
        return None
    return await verifier.verify(token)


async def get_current_user(
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
) -> AuthenticatedUser:
    """Signed-in user; owner-only endpoints reject everyone else"""
    if user is None:
        raise APIError(code="AUTH_REQUIRED", message="Sign in to manage payment requests", status_code=401)
    return user


def get_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> Optional[str]:
    if idempotency_key is None:
        return None
    return idempotency_key.strip()[:200] or None
