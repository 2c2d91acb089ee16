"""Refresh-token rotation: session issuance, rotate-on-refresh and reuse detection.

Each refresh token is either active, replaced (consumed by a rotation) or
revoked (logout or theft response). Replaced and revoked are terminal. A
replaced token that comes back is treated as stolen and its whole family is
revoked, including the legitimate successor; the system cannot tell a client
retry from a replay.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from authcore.core.clock import Clock, as_utc, utcnow
from authcore.core.config import Settings, settings
from authcore.core.exceptions import ConcurrencyConflict, StoreUnavailable, Unauthorized, UnauthorizedReason
from authcore.core.logging import get_audit_logger
from authcore.core.sanitize import clip
from authcore.core.security import AccessTokenIssuer, generate_refresh_secret, hash_refresh_token
from authcore.db.unit_of_work import UnitOfWork
from authcore.models.refresh_token import IP_ADDRESS_MAX_LENGTH, USER_AGENT_MAX_LENGTH, RefreshToken
from authcore.models.user import User

logger = logging.getLogger(__name__)
audit = get_audit_logger()

REUSE_REVOCATION_ATTEMPTS = 3


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    access_expires_at: dt.datetime
    refresh_token: str
    refresh_expires_at: dt.datetime


@dataclass(frozen=True)
class RefreshPolicy:
    token_lifetime: dt.timedelta
    family_lifetime: dt.timedelta

    @classmethod
    def from_settings(cls, source: Settings = settings) -> RefreshPolicy:
        return cls(
            token_lifetime=dt.timedelta(minutes=source.REFRESH_TOKEN_EXPIRE_MINUTES),
            family_lifetime=dt.timedelta(minutes=source.REFRESH_FAMILY_EXPIRE_MINUTES),
        )


class TokenRotationEngine:
    def __init__(
        self,
        uow: UnitOfWork,
        issuer: AccessTokenIssuer,
        *,
        policy: RefreshPolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._uow = uow
        self._issuer = issuer
        self._policy = policy or RefreshPolicy.from_settings()
        self._clock = clock

    def issue_new_session(self, principal: User, *, user_agent: str, ip_address: str) -> TokenPair:
        """Start a new token family, e.g. after login or invitation acceptance."""
        now = self._clock()
        family_id = uuid4()
        family_expires_at = now + self._policy.family_lifetime

        pair, _ = self._stage_token_pair(
            principal,
            family_id=family_id,
            family_expires_at=family_expires_at,
            now=now,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self._uow.save_changes()

        audit.info(
            "Refresh session issued: user=%s family=%s expires_at=%s family_expires_at=%s",
            principal.id,
            family_id,
            pair.refresh_expires_at.isoformat(),
            family_expires_at.isoformat(),
        )
        return pair

    def rotate(self, raw_refresh_token: str, *, user_agent: str, ip_address: str) -> TokenPair:
        """Consume ``raw_refresh_token`` and mint a new pair in the same family.

        At most one rotation per token can succeed: the old row is consumed by a
        conditional update, and the loser of a race is rejected, never retried.
        """
        token_hash = hash_refresh_token(raw_refresh_token or "")
        stored = self._uow.refresh_tokens.find_by_hash(token_hash)
        if stored is None:
            audit.warning("Refresh token not found: hash_prefix=%s", token_hash[:8])
            raise Unauthorized("invalid refresh token", reason=UnauthorizedReason.invalid_refresh_token)

        token_id = stored.id
        user_id = stored.user_id
        family_id = stored.family_id

        if stored.is_replaced:
            audit.warning("Refresh token reuse detected: user=%s family=%s token=%s", user_id, family_id, token_id)
            self._revoke_family_after_reuse(family_id, user_id)
            raise Unauthorized("reuse detected, re-authenticate", reason=UnauthorizedReason.refresh_token_reused)

        now = self._clock()
        if not stored.is_active_at(now):
            audit.warning("Inactive refresh token presented: user=%s family=%s token=%s", user_id, family_id, token_id)
            raise Unauthorized("expired or revoked", reason=UnauthorizedReason.refresh_token_inactive)

        self._uow.begin()
        try:
            # Inherited unchanged so every row of the family shares one ceiling.
            family_expires_at = as_utc(stored.family_expires_at)
            pair, successor = self._stage_token_pair(
                stored.user,
                family_id=family_id,
                family_expires_at=family_expires_at,
                now=now,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            self._uow.save_changes()

            affected = self._uow.refresh_tokens.mark_replaced(token_id, successor.token_hash)
            if affected == 0:
                raise ConcurrencyConflict(token_id)

            # Past this point the old token is consumed; always commit so the successor is delivered.
            self._uow.commit()
        except ConcurrencyConflict as exc:
            self._uow.rollback()
            audit.warning("Refresh rotation lost race: user=%s family=%s token=%s", user_id, family_id, token_id)
            raise Unauthorized("token already used", reason=UnauthorizedReason.refresh_token_already_used) from exc
        except Exception:
            self._uow.rollback()
            raise

        audit.info(
            "Refresh token rotated: user=%s family=%s token=%s expires_at=%s",
            user_id,
            family_id,
            token_id,
            pair.refresh_expires_at.isoformat(),
        )
        return pair

    def _revoke_family_after_reuse(self, family_id: UUID, user_id: UUID) -> None:
        attempt = 1
        while True:
            try:
                revoked = self._uow.refresh_tokens.mark_family_revoked(family_id)
                self._uow.save_changes()
                break
            except StoreUnavailable:
                self._uow.discard()
                logger.warning(
                    "Family revocation after reuse failed (attempt %s/%s): family=%s",
                    attempt,
                    REUSE_REVOCATION_ATTEMPTS,
                    family_id,
                )
                if attempt >= REUSE_REVOCATION_ATTEMPTS:
                    audit.error("Refresh family revocation after reuse gave up: user=%s family=%s", user_id, family_id)
                    raise
                attempt += 1

        audit.warning(
            "Refresh family revoked after reuse: user=%s family=%s revoked=%s",
            user_id,
            family_id,
            revoked,
        )

    def _stage_token_pair(
        self,
        principal: User,
        *,
        family_id: UUID,
        family_expires_at: dt.datetime,
        now: dt.datetime,
        user_agent: str,
        ip_address: str,
    ) -> tuple[TokenPair, RefreshToken]:
        access_token, access_expires_at = self._issuer.issue_access_token(principal)

        refresh_secret = generate_refresh_secret()
        refresh_expires_at = min(now + self._policy.token_lifetime, family_expires_at)
        row = RefreshToken(
            id=uuid4(),
            user_id=principal.id,
            token_hash=hash_refresh_token(refresh_secret),
            family_id=family_id,
            expires_at=refresh_expires_at,
            family_expires_at=family_expires_at,
            created_at=now,
            user_agent=clip(user_agent, USER_AGENT_MAX_LENGTH),
            ip_address=clip(ip_address, IP_ADDRESS_MAX_LENGTH),
        )
        self._uow.refresh_tokens.insert(row)

        pair = TokenPair(
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh_secret,
            refresh_expires_at=refresh_expires_at,
        )
        return pair, row
