"""Middleware for request IDs, access logging and locale routing"""
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from ..core.i18n import DEFAULT_LOCALE, RouteAction, negotiate_locale, resolve_locale_route


logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add request ID to all requests and responses"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        request_id = getattr(request.state, "request_id", "unknown")
        method = request.method
        path = request.url.path

        logger.info("request_started", method=method, path=path, request_id=request_id)

        response = await call_next(request)

        logger.info(
            "request_completed",
            method=method,
            path=path,
            status_code=response.status_code,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            request_id=request_id,
        )
        return response


class LocaleRoutingMiddleware(BaseHTTPMiddleware):
    """Apply the locale-prefix rule before routing.

    Prefixed asset requests are rewritten in place, unprefixed pages are
    redirected to the negotiated locale.
    """

    def __init__(self, app, default_locale: str = DEFAULT_LOCALE):
        super().__init__(app)
        self.default_locale = default_locale

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        preferred = negotiate_locale(request.headers.get("accept-language"), self.default_locale)
        route = resolve_locale_route(path, preferred)

        if route.action is RouteAction.REDIRECT:
            target = route.path
            if request.url.query:
                target = f"{target}?{request.url.query}"
            logger.debug("locale_redirect", path=path, target=target)
            return RedirectResponse(target, status_code=307)

        if route.action is RouteAction.REWRITE:
            request.scope["path"] = route.path
            request.scope["raw_path"] = route.path.encode("utf-8")

        request.state.locale = route.locale or preferred
        return await call_next(request)
