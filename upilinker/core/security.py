"""Session token verification."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from starlette.concurrency import run_in_threadpool

from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class TokenVerifier(ABC):
    @abstractmethod
    async def verify(self, token: str) -> Optional[AuthenticatedUser]:
        """Return the user behind a session token, or None when it is not valid."""
        raise NotImplementedError()


class StaticTokenVerifier(TokenVerifier):
    """Fixed token -> uid table, for local development and tests."""

    def __init__(self, tokens: Optional[Mapping[str, str]] = None) -> None:
        self._tokens: Dict[str, str] = dict(tokens or {})

    def add(self, token: str, uid: str) -> None:
        self._tokens[token] = uid

    async def verify(self, token: str) -> Optional[AuthenticatedUser]:
        uid = self._tokens.get(token)
        if uid is None:
            return None
        return AuthenticatedUser(uid=uid)


class FirebaseTokenVerifier(TokenVerifier):
    """Verifies Firebase Auth ID tokens with the Admin SDK."""

    def __init__(self, app: firebase_admin.App, check_revoked: bool = False) -> None:
        self._app = app
        self._check_revoked = check_revoked

    async def verify(self, token: str) -> Optional[AuthenticatedUser]:
        try:
            claims = await run_in_threadpool(
                firebase_auth.verify_id_token, token, self._app, self._check_revoked
            )
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.UserDisabledError) as exc:
            logger.info("session_token_rejected", reason=type(exc).__name__)
            return None
        return AuthenticatedUser(
            uid=claims["uid"],
            email=claims.get("email"),
            display_name=claims.get("name"),
        )


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
