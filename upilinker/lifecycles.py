"""Startup/shutdown lifecycle hooks"""
from contextlib import asynccontextmanager
from typing import Optional

import firebase_admin
import httpx
from fastapi import FastAPI
from firebase_admin import credentials

from .core.config import Settings, get_settings
from .core.logging import get_logger
from .core.security import FirebaseTokenVerifier, StaticTokenVerifier, TokenVerifier
from .services.qr import QRService
from .services.requests import PaymentRequestService
from .store.base import RequestStore
from .store.memory import InMemoryRequestStore


logger = get_logger(__name__)

FIREBASE_APP_NAME = "upi-linker"


def _firebase_app(settings: Settings) -> firebase_admin.App:
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    if settings.firebase_credentials_file:
        credential = credentials.Certificate(settings.firebase_credentials_file)
    else:
        credential = credentials.ApplicationDefault()
    options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
    return firebase_admin.initialize_app(credential, options, name=FIREBASE_APP_NAME)


def build_store(settings: Settings, firebase_app: Optional[firebase_admin.App]) -> RequestStore:
    if settings.store_backend == "firestore":
        from .store.firestore import FirestoreRequestStore

        return FirestoreRequestStore.from_firebase_app(firebase_app or _firebase_app(settings))
    return InMemoryRequestStore()


def build_token_verifier(settings: Settings, firebase_app: Optional[firebase_admin.App]) -> TokenVerifier:
    if settings.auth_backend == "firebase":
        return FirebaseTokenVerifier(firebase_app or _firebase_app(settings))
    return StaticTokenVerifier(settings.dev_tokens)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown"""

    logger.info("application_starting")

    settings = get_settings()
    uses_firebase = settings.store_backend == "firestore" or settings.auth_backend == "firebase"
    firebase_app = _firebase_app(settings) if uses_firebase else None

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.qr_timeout_seconds),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        follow_redirects=True,
    )
    store = build_store(settings, firebase_app)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.store = store
    app.state.token_verifier = build_token_verifier(settings, firebase_app)
    app.state.request_service = PaymentRequestService(store, settings)
    app.state.qr_service = QRService(settings, http_client)

    logger.info(
        "application_started",
        store_backend=settings.store_backend,
        auth_backend=settings.auth_backend,
    )

    try:
        yield
    finally:
        logger.info("application_shutting_down")
        await http_client.aclose()
        store.close()
        logger.info("application_shutdown_complete")
