"""Cookie transport for access and refresh tokens.

The policy is an explicit immutable value handed to these helpers; nothing
here reads or mutates process-wide cookie state.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Response

from authcore.core.config import Settings
from authcore.services.tokens import TokenPair


@dataclass(frozen=True)
class CookiePolicy:
    access_cookie_name: str = "access_token"
    refresh_cookie_name: str = "refresh_token"
    domain: str | None = None
    secure: bool = True
    samesite: str = "none"
    path: str = "/"

    @classmethod
    def from_settings(cls, source: Settings) -> CookiePolicy:
        return cls(
            access_cookie_name=source.ACCESS_COOKIE_NAME,
            refresh_cookie_name=source.REFRESH_COOKIE_NAME,
            domain=source.COOKIE_DOMAIN.strip() or None,
            secure=source.COOKIE_SECURE,
            samesite=source.COOKIE_SAMESITE.lower(),
        )


def set_auth_cookies(response: Response, policy: CookiePolicy, tokens: TokenPair) -> None:
    response.set_cookie(
        policy.access_cookie_name,
        tokens.access_token,
        expires=tokens.access_expires_at,
        path=policy.path,
        domain=policy.domain,
        secure=policy.secure,
        httponly=True,
        samesite=policy.samesite,
    )
    response.set_cookie(
        policy.refresh_cookie_name,
        tokens.refresh_token,
        expires=tokens.refresh_expires_at,
        path=policy.path,
        domain=policy.domain,
        secure=policy.secure,
        httponly=True,
        samesite=policy.samesite,
    )


def clear_auth_cookies(response: Response, policy: CookiePolicy) -> None:
    for name in (policy.access_cookie_name, policy.refresh_cookie_name):
        response.delete_cookie(
            name,
            path=policy.path,
            domain=policy.domain,
            secure=policy.secure,
            httponly=True,
            samesite=policy.samesite,
        )
