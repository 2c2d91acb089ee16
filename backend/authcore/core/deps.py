"""Common FastAPI dependencies for token services and authentication."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from authcore.core.config import settings
from authcore.core.cookies import CookiePolicy
from authcore.core.exceptions import Unauthorized, UnauthorizedReason
from authcore.core.keys import SigningKeyProvider
from authcore.core.security import AccessTokenIssuer, decode_access_token
from authcore.db.session import get_db
from authcore.db.unit_of_work import UnitOfWork
from authcore.services.auth import LoginService, PasswordCredentialVerifier
from authcore.services.logout import SessionTerminator
from authcore.services.tokens import RefreshPolicy, TokenRotationEngine


@lru_cache(maxsize=1)
def get_key_provider() -> SigningKeyProvider:
    return SigningKeyProvider.from_settings(settings)


def get_cookie_policy() -> CookiePolicy:
    return CookiePolicy.from_settings(settings)


def get_access_token_issuer(key_provider: SigningKeyProvider = Depends(get_key_provider)) -> AccessTokenIssuer:
    return AccessTokenIssuer.from_settings(key_provider, settings)


def get_unit_of_work(db: Session = Depends(get_db)) -> UnitOfWork:
    return UnitOfWork(db)


def get_token_engine(
    uow: UnitOfWork = Depends(get_unit_of_work),
    issuer: AccessTokenIssuer = Depends(get_access_token_issuer),
) -> TokenRotationEngine:
    return TokenRotationEngine(uow, issuer, policy=RefreshPolicy.from_settings(settings))


def get_session_terminator(uow: UnitOfWork = Depends(get_unit_of_work)) -> SessionTerminator:
    return SessionTerminator(uow)


def get_login_service(
    db: Session = Depends(get_db),
    engine: TokenRotationEngine = Depends(get_token_engine),
) -> LoginService:
    return LoginService(db, PasswordCredentialVerifier(db), engine)


def _extract_bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("Authorization", "")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    cleaned = token.strip()
    return cleaned or None


def get_current_claims(
    request: Request,
    key_provider: SigningKeyProvider = Depends(get_key_provider),
    cookie_policy: CookiePolicy = Depends(get_cookie_policy),
) -> dict[str, Any]:
    token = _extract_bearer_token(request) or request.cookies.get(cookie_policy.access_cookie_name)
    if not token:
        raise Unauthorized("not authenticated", reason=UnauthorizedReason.invalid_access_token)
    claims = decode_access_token(token, key_provider, source=settings)
    if not claims.get("sub"):
        raise Unauthorized("access token without subject", reason=UnauthorizedReason.invalid_access_token)
    return claims
