"""Locale-prefixed HTML pages and the sitemap."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from xml.sax.saxutils import escape
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ..core.config import Settings, get_settings
from ..core.i18n import LOCALE_NAMES, LOCALES, Translator
from ..core.security import AuthenticatedUser
from ..models.payment import PaymentRequest
from ..services.lifecycle import ViewState, resolve_view_state
from ..services.requests import PaymentRequestNotFound, PaymentRequestService, pay_path
from ..services.upi import build_upi_link, format_rupees, qr_image_url
from ..store.base import Snapshot, StoreUnavailableError
from .deps import get_optional_user, get_request_service

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))
templates.env.filters["rupees"] = format_rupees

router = APIRouter(include_in_schema=False)

SITEMAP_PAGES = ("", "/about", "/developers", "/embed", "/terms", "/privacy")

# Section keys in display order; texts live under "<page>.sections.<key>" in the catalogs.
INFO_PAGES: Dict[str, Tuple[str, ...]] = {
    "about": ("links", "requests", "embed", "languages"),
    "terms": ("accounts", "links", "ip", "thirdParty", "termination", "law", "changes", "contact"),
    "privacy": ("collect", "use", "logData", "cookies", "security", "consent", "changes", "contact"),
}

_STATUS_BY_STATE = {
    ViewState.NOT_FOUND: 404,
    ViewState.EXPIRED: 410,
    ViewState.READY: 200,
}

DEVELOPER_EXAMPLE_LINK = build_upi_link("your-upi-id@bank", "Your Name", 100, "Payment for Goods")


def _check_locale(locale: str) -> str:
    if locale not in LOCALES:
        raise HTTPException(status_code=404, detail="Unknown locale")
    return locale


def _localtime(value: Optional[datetime], tz_name: str) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(tz_name)).strftime("%d %b %Y, %H:%M")


def _render(
    request: Request,
    template: str,
    locale: str,
    settings: Settings,
    status_code: int = 200,
    **context: Any,
) -> HTMLResponse:
    t = Translator(locale)
    base: Dict[str, Any] = {
        "t": t,
        "locale": locale,
        "locales": LOCALES,
        "locale_names": LOCALE_NAMES,
        "direction": t.direction,
        "app_name": settings.app_name,
        "base_url": settings.public_base_url.rstrip("/"),
        "localtime": lambda value: _localtime(value, settings.display_timezone),
        "page_path": request.url.path,
    }
    base.update(context)
    return templates.TemplateResponse(request, template, base, status_code=status_code)


@router.get("/{locale}/pay/{request_id}", response_class=HTMLResponse)
async def pay_page(
    request: Request,
    locale: str,
    request_id: str,
    public: bool = Query(default=False),
    amount: Optional[float] = Query(default=None, gt=0, allow_inf_nan=False),
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    service: PaymentRequestService = Depends(get_request_service),
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    _check_locale(locale)
    owner_id = user.uid if user and not public else None

    snapshot: Snapshot[PaymentRequest]
    try:
        snapshot = Snapshot(data=await service.get(request_id, public, owner_id))
    except PaymentRequestNotFound:
        snapshot = Snapshot(data=None)
    except StoreUnavailableError as exc:
        snapshot = Snapshot(error=exc)

    state = resolve_view_state(snapshot, service.now())
    status_code = 503 if snapshot.error is not None else _STATUS_BY_STATE[state]
    view = service.render(snapshot.data, amount) if state is ViewState.READY else None

    return _render(
        request,
        "pay.html",
        locale,
        settings,
        status_code=status_code,
        state=state.value,
        unavailable=snapshot.error is not None,
        view=view,
        payment=snapshot.data if view else None,
        public=public,
        signed_in=user is not None,
        request_id=request_id,
        stream_url=f"/v1/payment-requests/{request_id}/stream" + ("?public=true" if public else ""),
        share_url=settings.public_base_url.rstrip("/") + pay_path(request_id, public, locale),
    )


@router.get("/{locale}/dashboard", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    locale: str,
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    service: PaymentRequestService = Depends(get_request_service),
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    _check_locale(locale)
    if user is None:
        return _render(request, "dashboard.html", locale, settings, status_code=401, user=None, payments=[])

    try:
        payments = await service.history(user.uid)
    except StoreUnavailableError:
        return _render(
            request, "dashboard.html", locale, settings, status_code=503, user=user, payments=[], unavailable=True
        )

    rows = [
        {
            "payment": payment,
            "expired": service.is_expired(payment),
            "qr_url": service.qr_url(payment.upi_link),
            "pay_path": pay_path(payment.id, False, locale),
        }
        for payment in payments
    ]
    return _render(request, "dashboard.html", locale, settings, user=user, payments=rows)


@router.get("/{locale}/embed", response_class=HTMLResponse)
async def embed_instructions(
    request: Request,
    locale: str,
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    _check_locale(locale)
    return _render(request, "embed.html", locale, settings)


@router.get("/{locale}/embed/widget", response_class=HTMLResponse)
async def embed_widget(
    request: Request,
    locale: str,
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    _check_locale(locale)
    response = _render(request, "widget.html", locale, settings)
    response.headers["Content-Security-Policy"] = "frame-ancestors *"
    return response


@router.get("/{locale}/developers", response_class=HTMLResponse)
async def developers(
    request: Request,
    locale: str,
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    _check_locale(locale)
    return _render(
        request,
        "developers.html",
        locale,
        settings,
        example_link=DEVELOPER_EXAMPLE_LINK,
        example_qr=qr_image_url(DEVELOPER_EXAMPLE_LINK, settings.qr_api_base, 250),
    )


def _info_page(page: str):
    async def handler(
        request: Request,
        locale: str,
        settings: Settings = Depends(get_settings),
    ) -> HTMLResponse:
        _check_locale(locale)
        return _render(request, "info.html", locale, settings, page=page, sections=INFO_PAGES[page])

    handler.__name__ = f"{page}_page"
    return handler


for _page in INFO_PAGES:
    router.add_api_route(f"/{{locale}}/{_page}", _info_page(_page), methods=["GET"], response_class=HTMLResponse)


@router.get("/sitemap.xml")
async def sitemap(settings: Settings = Depends(get_settings)) -> Response:
    base_url = settings.public_base_url.rstrip("/")
    lastmod = datetime.now(tz=timezone.utc).date().isoformat()
    entries = []
    for locale in LOCALES:
        for page in SITEMAP_PAGES:
            entries.append(
                "  <url>"
                f"<loc>{escape(f'{base_url}/{locale}{page}')}</loc>"
                f"<lastmod>{lastmod}</lastmod>"
                f"<changefreq>{'daily' if page == '' else 'monthly'}</changefreq>"
                f"<priority>{'1.0' if page == '' else '0.8'}</priority>"
                "</url>"
            )
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
        + "\n".join(entries)
        + "\n</urlset>\n"
    )
    return Response(content=body, media_type="application/xml")


@router.get("/robots.txt")
async def robots(settings: Settings = Depends(get_settings)) -> Response:
    base_url = settings.public_base_url.rstrip("/")
    body = f"User-agent: *\nAllow: /\nDisallow: /v1/\nSitemap: {base_url}/sitemap.xml\n"
    return Response(content=body, media_type="text/plain")


# Registered last so the fixed paths above are not taken for a locale.
@router.get("/{locale}", response_class=HTMLResponse)
async def home(
    request: Request,
    locale: str,
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    _check_locale(locale)
    return _render(request, "home.html", locale, settings, user=user)
