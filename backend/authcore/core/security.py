"""Security helpers for hashing secrets and issuing access tokens."""

from __future__ import annotations

import datetime as dt
import hashlib
import secrets
from typing import Any, Iterable, Mapping
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from authcore.core.clock import Clock, utcnow
from authcore.core.config import Settings, settings
from authcore.core.exceptions import Unauthorized, UnauthorizedReason
from authcore.core.keys import SigningKeyProvider
from authcore.models.user import User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

REFRESH_TOKEN_BYTES = 32

CLAIM_SUBJECT = "sub"
CLAIM_EMAIL = "email"
CLAIM_NAME = "name"
CLAIM_GIVEN_NAME = "given_name"
CLAIM_ORG_ID = "org_id"
CLAIM_ROLE = "role"
CLAIM_JTI = "jti"
FULL_NAME_CLAIM = "full_name"

RESERVED_CLAIMS = frozenset(
    {CLAIM_SUBJECT, CLAIM_EMAIL, CLAIM_NAME, CLAIM_GIVEN_NAME, CLAIM_ORG_ID, CLAIM_ROLE, CLAIM_JTI}
    | {"iat", "nbf", "exp", "iss", "aud"}
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def generate_refresh_secret() -> str:
    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)


def hash_refresh_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class AccessTokenIssuer:
    """Builds short-lived HS256 bearer tokens for a principal. No storage access."""

    def __init__(
        self,
        key_provider: SigningKeyProvider,
        *,
        lifetime: dt.timedelta | None = None,
        issuer: str | None = None,
        audience: str | None = None,
        algorithm: str | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._key_provider = key_provider
        self._lifetime = lifetime or dt.timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self._issuer = issuer or settings.JWT_ISSUER
        self._audience = audience or settings.JWT_AUDIENCE
        self._algorithm = algorithm or settings.JWT_ALGORITHM
        self._clock = clock

    @classmethod
    def from_settings(cls, key_provider: SigningKeyProvider, source: Settings, *, clock: Clock = utcnow) -> AccessTokenIssuer:
        return cls(
            key_provider,
            lifetime=dt.timedelta(minutes=source.ACCESS_TOKEN_EXPIRE_MINUTES),
            issuer=source.JWT_ISSUER,
            audience=source.JWT_AUDIENCE,
            algorithm=source.JWT_ALGORITHM,
            clock=clock,
        )

    def issue_access_token(
        self,
        principal: User,
        *,
        claims: Mapping[str, Any] | None = None,
        roles: Iterable[str] | None = None,
    ) -> tuple[str, dt.datetime]:
        now = self._clock()
        expires_at = now + self._lifetime

        payload: dict[str, Any] = {
            CLAIM_SUBJECT: str(principal.id),
            CLAIM_EMAIL: principal.email or "",
            CLAIM_NAME: principal.user_name or "",
            CLAIM_JTI: uuid4().hex,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
        }
        if principal.org_id:
            payload[CLAIM_ORG_ID] = str(principal.org_id)

        custom_claims = dict(principal.claims or {}) if claims is None else dict(claims)
        full_name = str(custom_claims.pop(FULL_NAME_CLAIM, "") or "").strip()
        if full_name:
            payload[CLAIM_GIVEN_NAME] = full_name
        for name, value in custom_claims.items():
            if name in RESERVED_CLAIMS:
                continue
            payload[name] = value

        role_values = list(principal.roles or []) if roles is None else list(roles)
        payload[CLAIM_ROLE] = role_values

        key = self._key_provider.get_signing_key()
        token = jwt.encode(payload, key.secret, algorithm=self._algorithm, headers={"kid": key.key_id})
        return token, expires_at


def decode_access_token(
    token: str,
    key_provider: SigningKeyProvider,
    *,
    source: Settings = settings,
) -> dict[str, Any]:
    key = key_provider.get_validation_key()
    try:
        return jwt.decode(
            token,
            key.secret,
            algorithms=[source.JWT_ALGORITHM],
            audience=source.JWT_AUDIENCE,
            issuer=source.JWT_ISSUER,
        )
    except ExpiredSignatureError as exc:
        raise Unauthorized("access token expired", reason=UnauthorizedReason.access_token_expired) from exc
    except JWTError as exc:
        raise Unauthorized("invalid access token", reason=UnauthorizedReason.invalid_access_token) from exc
