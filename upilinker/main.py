"""FastAPI application factory."""

from __future__ import annotations

from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .api.errors import EXCEPTION_HANDLERS
from .api.middleware import LocaleRoutingMiddleware, LoggingMiddleware, RequestIDMiddleware
from .api.pages import router as pages_router
from .api.v1.router import create_v1_router
from .core.config import get_settings
from .core.logging import setup_logging
from .lifecycles import lifespan

STATIC_DIR = Path(__file__).parent / "static"


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(LocaleRoutingMiddleware, default_locale=settings.default_locale)
    # Last added runs first: the request id is bound before access logging.
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for exc_class, handler in EXCEPTION_HANDLERS:
        app.add_exception_handler(exc_class, handler)

    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    # API routes first so "/v1" is never taken for a locale.
    app.include_router(create_v1_router())
    app.include_router(pages_router)
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "upilinker.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
        log_config=None,
    )
