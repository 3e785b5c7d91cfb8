"""Versioned API router registration."""

from fastapi import APIRouter

from .health import router as health_router
from .links import router as links_router
from .payment_requests import router as payment_requests_router
from .qr import router as qr_router


def create_v1_router() -> APIRouter:
    """Create and configure v1 API router"""
    router = APIRouter(prefix="/v1")

    router.include_router(health_router, tags=["health"])
    router.include_router(links_router, tags=["links"])
    router.include_router(payment_requests_router, tags=["payment-requests"])
    router.include_router(qr_router, tags=["qr"])

    return router
