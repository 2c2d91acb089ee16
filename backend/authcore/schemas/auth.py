"""Auth-related schemas (login, token pair, refresh, logout, current user)."""

from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator

from authcore.core.sanitize import clean_email, clean_single_line


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return clean_email(value)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_at: dt.datetime
    refresh_token: str
    refresh_token_expires_at: dt.datetime


class RefreshTokenPayload(BaseModel):
    refresh_token: str | None = None

    @field_validator("refresh_token", mode="before")
    @classmethod
    def normalize_refresh_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return clean_single_line(value) or None


class LogoutResponse(BaseModel):
    message: str = "logged_out"
    revoked_sessions: int = 0


class CurrentUserResponse(BaseModel):
    id: str
    email: str = ""
    user_name: str = ""
    roles: list[str] = Field(default_factory=list)
    org_id: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> CurrentUserResponse:
        roles = claims.get("role") or []
        if isinstance(roles, str):
            roles = [roles]
        return cls(
            id=str(claims.get("sub") or ""),
            email=str(claims.get("email") or ""),
            user_name=str(claims.get("name") or ""),
            roles=[str(role) for role in roles],
            org_id=claims.get("org_id"),
        )
