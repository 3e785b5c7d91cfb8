"""Locales, message catalogs and the locale-prefix routing rule."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

LOCALES: Tuple[str, ...] = (
    "en", "hi", "bn-IN", "mr-IN", "te-IN", "ta-IN",
    "gu-IN", "ur-IN", "kn-IN", "or-IN", "ml-IN", "pa-IN",
)
DEFAULT_LOCALE = "en"

LOCALE_NAMES: Dict[str, str] = {
    "en": "English",
    "hi": "हिंदी",
    "bn-IN": "বাংলা",
    "mr-IN": "मराठी",
    "te-IN": "తెలుగు",
    "ta-IN": "தமிழ்",
    "gu-IN": "ગુજરાતી",
    "ur-IN": "اردو",
    "kn-IN": "ಕನ್ನಡ",
    "or-IN": "ଓଡ଼ିଆ",
    "ml-IN": "മലയാളം",
    "pa-IN": "ਪੰਜਾਬੀ",
}

RTL_LOCALES = frozenset({"ur-IN"})

# Served without a locale prefix.
PASSTHROUGH_PREFIXES: Tuple[str, ...] = ("/v1/", "/static/", "/docs", "/redoc", "/openapi.json")
PASSTHROUGH_PATHS = frozenset({"/v1", "/sitemap.xml", "/robots.txt", "/favicon.ico"})

CATALOG_DIR = Path(__file__).resolve().parent.parent / "locales"

_BY_LOWER = {locale.lower(): locale for locale in LOCALES}


def normalize_locale(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return _BY_LOWER.get(value.strip().lower())


def negotiate_locale(accept_language: Optional[str], default: str = DEFAULT_LOCALE) -> str:
    """Pick the best supported locale from an Accept-Language header.

    Exact tags win; a bare language ("bn") also matches its regional variant
    ("bn-IN") and a regional tag ("hi-IN") matches the bare locale ("hi").
    """
    if not accept_language:
        return default

    ranked: List[Tuple[float, int, str]] = []
    for position, part in enumerate(accept_language.split(",")):
        tag, _, params = part.strip().partition(";")
        if not tag or tag == "*":
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, value = param.strip().partition("=")
            if key == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if quality > 0:
            ranked.append((-quality, position, tag))

    for _, _, tag in sorted(ranked):
        exact = normalize_locale(tag)
        if exact:
            return exact
        language = tag.split("-")[0].lower()
        if language in _BY_LOWER:
            return _BY_LOWER[language]
        regional = _BY_LOWER.get(f"{language}-in")
        if regional:
            return regional
    return default


class RouteAction(str, Enum):
    PASS = "pass"
    REWRITE = "rewrite"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class LocaleRoute:
    action: RouteAction
    path: str
    locale: Optional[str] = None


def _looks_like_asset(path: str) -> bool:
    last = path.rsplit("/", 1)[-1]
    return path.startswith("/static/") or ("." in last and not last.startswith("."))


def resolve_locale_route(path: str, preferred_locale: str = DEFAULT_LOCALE) -> LocaleRoute:
    """Decide how a request path is served before any route runs.

    - API, docs and asset paths pass through untouched.
    - ``/{locale}/<asset>`` is rewritten to ``/<asset>``.
    - ``/{locale}`` and ``/{locale}/...`` pages pass.
    - anything else is redirected under ``preferred_locale``.
    """
    if path in PASSTHROUGH_PATHS or path.startswith(PASSTHROUGH_PREFIXES):
        return LocaleRoute(RouteAction.PASS, path)

    segments = path.lstrip("/").split("/", 1)
    locale = normalize_locale(segments[0])
    if locale is not None:
        rest = "/" + segments[1] if len(segments) > 1 else "/"
        if rest != "/" and _looks_like_asset(rest):
            return LocaleRoute(RouteAction.REWRITE, rest, locale)
        if locale != segments[0]:
            return LocaleRoute(RouteAction.REDIRECT, f"/{locale}{rest if rest != '/' else ''}", locale)
        return LocaleRoute(RouteAction.PASS, path, locale)

    if _looks_like_asset(path):
        return LocaleRoute(RouteAction.PASS, path)

    target = f"/{preferred_locale}" if path in ("", "/") else f"/{preferred_locale}{path}"
    return LocaleRoute(RouteAction.REDIRECT, target, preferred_locale)


def _flatten(prefix: str, node: Any, out: Dict[str, str]) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            _flatten(f"{prefix}.{key}" if prefix else key, value, out)
    else:
        out[prefix] = str(node)


def _read_catalog(locale: str) -> Dict[str, str]:
    path = CATALOG_DIR / f"{locale}.json"
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        flat: Dict[str, str] = {}
        _flatten("", json.load(f), flat)
        return flat


@lru_cache(maxsize=None)
def load_messages(locale: str) -> Dict[str, str]:
    """Locale messages merged over English."""
    messages = dict(_read_catalog(DEFAULT_LOCALE))
    if locale != DEFAULT_LOCALE:
        messages.update(_read_catalog(locale))
    return messages


class Translator:
    def __init__(self, locale: str) -> None:
        self.locale = locale
        self.messages = load_messages(locale)

    @property
    def direction(self) -> str:
        return "rtl" if self.locale in RTL_LOCALES else "ltr"

    def __call__(self, key: str, **params: Any) -> str:
        text = self.messages.get(key, key)
        for name, value in params.items():
            text = text.replace("{" + name + "}", str(value))
        return text
