"""Custom exceptions and error handling"""
from typing import Any, Dict, Optional

import structlog
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..services.lifecycle import InvalidStatusTransition
from ..services.qr import QRUpstreamError
from ..services.requests import PaymentLinkExpired, PaymentRequestNotFound
from ..store.base import StoreUnavailableError


logger = structlog.get_logger(__name__)


class APIError(Exception):
    """Base API error with error envelope"""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def create_error_response(
    code: str,
    message: str,
    request_id: str,
    details: Optional[Dict[str, Any]] = None,
    status_code: int = 400
) -> JSONResponse:
    """Create standardized error response"""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": request_id,
                "details": jsonable_encoder(details or {})
            }
        }
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    logger.warning("api_error", code=exc.code, message=exc.message, path=request.url.path)
    return create_error_response(
        code=exc.code,
        message=exc.message,
        request_id=_request_id(request),
        details=exc.details,
        status_code=exc.status_code
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Field-level errors; nothing has been written when this fires."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning("validation_error", errors=errors, path=request.url.path)
    return create_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        request_id=_request_id(request),
        details={"errors": errors},
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY
    )


async def not_found_handler(request: Request, exc: PaymentRequestNotFound) -> JSONResponse:
    logger.info("payment_request_not_found", payment_id=exc.request_id, path=request.url.path)
    return create_error_response(
        code="NOT_FOUND",
        message="This payment link is invalid or you do not have permission to view it.",
        request_id=_request_id(request),
        status_code=status.HTTP_404_NOT_FOUND
    )


async def expired_handler(request: Request, exc: PaymentLinkExpired) -> JSONResponse:
    return create_error_response(
        code="LINK_EXPIRED",
        message="This payment link has expired and is no longer valid.",
        request_id=_request_id(request),
        details={"expired_at": exc.request.expires_at},
        status_code=status.HTTP_410_GONE
    )


async def transition_handler(request: Request, exc: InvalidStatusTransition) -> JSONResponse:
    logger.info("status_transition_rejected", current=exc.current.value, target=exc.target.value)
    return create_error_response(
        code="INVALID_TRANSITION",
        message=str(exc),
        request_id=_request_id(request),
        details={"current": exc.current.value, "target": exc.target.value},
        status_code=status.HTTP_409_CONFLICT
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("store_unavailable", error=str(exc), path=request.url.path)
    return create_error_response(
        code="STORE_UNAVAILABLE",
        message="The payment store is unavailable. Please try again.",
        request_id=_request_id(request),
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE
    )


async def qr_upstream_handler(request: Request, exc: QRUpstreamError) -> JSONResponse:
    return create_error_response(
        code="QR_UPSTREAM_ERROR",
        message=str(exc),
        request_id=_request_id(request),
        details={"upstream_status": exc.status_code},
        status_code=status.HTTP_502_BAD_GATEWAY
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning("http_exception", status_code=exc.status_code, detail=exc.detail, path=request.url.path)
    return create_error_response(
        code="HTTP_ERROR",
        message=str(exc.detail),
        request_id=_request_id(request),
        status_code=exc.status_code
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        request_id=_request_id(request),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


EXCEPTION_HANDLERS = (
    (APIError, api_error_handler),
    (RequestValidationError, validation_error_handler),
    (PaymentRequestNotFound, not_found_handler),
    (PaymentLinkExpired, expired_handler),
    (InvalidStatusTransition, transition_handler),
    (StoreUnavailableError, store_unavailable_handler),
    (QRUpstreamError, qr_upstream_handler),
    (StarletteHTTPException, http_exception_handler),
    (Exception, general_exception_handler),
)
