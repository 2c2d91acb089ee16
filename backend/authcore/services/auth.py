"""Service helpers for credential verification and login."""

from __future__ import annotations

import datetime as dt
import enum
import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from authcore.core.clock import Clock, as_utc, utcnow
from authcore.core.config import settings
from authcore.core.exceptions import Unauthorized, UnauthorizedReason
from authcore.core.sanitize import clean_email
from authcore.core.security import hash_password, verify_password
from authcore.models.user import User
from authcore.services.tokens import TokenPair, TokenRotationEngine

logger = logging.getLogger(__name__)

# Verified against when the account does not exist, so both paths cost one hash check.
_DUMMY_PASSWORD_HASH = hash_password("authcore-timing-equalizer")


class VerificationResult(str, enum.Enum):
    success = "success"
    failed = "failed"
    locked_out = "locked_out"


class CredentialVerifier(Protocol):
    def verify(self, identifier: str, secret: str) -> VerificationResult: ...


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == clean_email(email)).first()


class PasswordCredentialVerifier:
    """Checks a password hash and applies a failed-attempt lockout."""

    def __init__(
        self,
        db: Session,
        *,
        max_failed_attempts: int | None = None,
        lockout: dt.timedelta | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        if max_failed_attempts is None:
            max_failed_attempts = settings.LOGIN_MAX_FAILED_ATTEMPTS
        if lockout is None:
            lockout = dt.timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
        self._max_failed_attempts = max_failed_attempts
        self._lockout = lockout
        self._clock = clock

    def verify(self, identifier: str, secret: str) -> VerificationResult:
        user = find_user_by_email(self.db, identifier)
        if not user or not user.password_hash:
            verify_password(secret, _DUMMY_PASSWORD_HASH)
            return VerificationResult.failed

        user_id = user.id
        now = self._clock()
        if user.lockout_until is not None and as_utc(user.lockout_until) > now:
            return VerificationResult.locked_out

        if not verify_password(secret, user.password_hash):
            self._record_failure(user_id, now)
            return VerificationResult.failed

        if user.failed_login_count or user.lockout_until is not None:
            self.db.query(User).filter(User.id == user_id).update(
                {User.failed_login_count: 0, User.lockout_until: None},
                synchronize_session=False,
            )
            self.db.commit()
        return VerificationResult.success

    def _record_failure(self, user_id: UUID, now: dt.datetime) -> None:
        # Counted by the database so parallel wrong guesses cannot overwrite each other.
        self.db.query(User).filter(User.id == user_id).update(
            {User.failed_login_count: User.failed_login_count + 1},
            synchronize_session=False,
        )
        locked = (
            self.db.query(User)
            .filter(User.id == user_id, User.failed_login_count >= self._max_failed_attempts)
            .update(
                {User.lockout_until: now + self._lockout, User.failed_login_count: 0},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if locked:
            logger.warning("Account locked after repeated failures: %s", user_id)


class LoginService:
    def __init__(
        self,
        db: Session,
        verifier: CredentialVerifier,
        engine: TokenRotationEngine,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self._verifier = verifier
        self._engine = engine
        self._clock = clock

    def login(self, email: str, password: str, *, user_agent: str, ip_address: str) -> TokenPair:
        normalized = clean_email(email)
        result = self._verifier.verify(normalized, password)
        if result is not VerificationResult.success:
            # Failed and locked-out look the same to the client.
            logger.warning("Login attempt failed for email %s: %s", normalized, result.value)
            raise Unauthorized("invalid credentials", reason=UnauthorizedReason.invalid_credentials)

        user = find_user_by_email(self.db, normalized)
        if user is None:
            raise Unauthorized("invalid credentials", reason=UnauthorizedReason.invalid_credentials)
        if not user.email_confirmed:
            logger.warning("Login attempt with unconfirmed email: %s", normalized)
            raise Unauthorized("email not confirmed", reason=UnauthorizedReason.email_not_confirmed)

        user.last_login_at = self._clock()
        self.db.add(user)
        tokens = self._engine.issue_new_session(user, user_agent=user_agent, ip_address=ip_address)
        logger.info("User %s logged in successfully", user.id)
        return tokens
