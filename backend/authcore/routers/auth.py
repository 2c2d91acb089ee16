"""Authentication endpoints (login, refresh, logout, current user)."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response

from authcore.core.client_info import get_client_info
from authcore.core.cookies import CookiePolicy, clear_auth_cookies, set_auth_cookies
from authcore.core.deps import (
    get_cookie_policy,
    get_current_claims,
    get_login_service,
    get_session_terminator,
    get_token_engine,
)
from authcore.core.exceptions import Unauthorized, UnauthorizedReason
from authcore.schemas.auth import (
    CurrentUserResponse,
    LoginRequest,
    LogoutResponse,
    RefreshTokenPayload,
    TokenResponse,
)
from authcore.services.auth import LoginService
from authcore.services.logout import SessionTerminator
from authcore.services.tokens import TokenPair, TokenRotationEngine

router = APIRouter()
logger = logging.getLogger(__name__)


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        expires_at=tokens.access_expires_at,
        refresh_token=tokens.refresh_token,
        refresh_token_expires_at=tokens.refresh_expires_at,
    )


def _presented_refresh_token(
    request: Request,
    payload: RefreshTokenPayload | None,
    cookie_policy: CookiePolicy,
) -> str | None:
    if payload is not None and payload.refresh_token:
        return payload.refresh_token
    cookie_value = (request.cookies.get(cookie_policy.refresh_cookie_name) or "").strip()
    return cookie_value or None


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    login_service: LoginService = Depends(get_login_service),
    cookie_policy: CookiePolicy = Depends(get_cookie_policy),
) -> TokenResponse:
    client = get_client_info(request)
    tokens = login_service.login(
        payload.email,
        payload.password,
        user_agent=client.user_agent,
        ip_address=client.ip_address,
    )
    set_auth_cookies(response, cookie_policy, tokens)
    return _token_response(tokens)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    payload: RefreshTokenPayload | None = Body(default=None),
    engine: TokenRotationEngine = Depends(get_token_engine),
    cookie_policy: CookiePolicy = Depends(get_cookie_policy),
) -> TokenResponse:
    raw_token = _presented_refresh_token(request, payload, cookie_policy)
    if not raw_token:
        raise Unauthorized("refresh token is missing", reason=UnauthorizedReason.refresh_token_missing)

    client = get_client_info(request)
    tokens = engine.rotate(raw_token, user_agent=client.user_agent, ip_address=client.ip_address)
    set_auth_cookies(response, cookie_policy, tokens)
    return _token_response(tokens)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    request: Request,
    response: Response,
    payload: RefreshTokenPayload | None = Body(default=None),
    terminator: SessionTerminator = Depends(get_session_terminator),
    cookie_policy: CookiePolicy = Depends(get_cookie_policy),
) -> LogoutResponse:
    result = terminator.logout(_presented_refresh_token(request, payload, cookie_policy))
    if result.clear_client_session:
        clear_auth_cookies(response, cookie_policy)
    return LogoutResponse(revoked_sessions=result.revoked_count)


@router.get("/me", response_model=CurrentUserResponse)
def current_user(claims: dict[str, Any] = Depends(get_current_claims)) -> CurrentUserResponse:
    return CurrentUserResponse.from_claims(claims)
