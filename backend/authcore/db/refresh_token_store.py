"""Persistence for refresh-token rows.

Every mutation here is one set-based statement evaluated by the database, so
concurrent requests racing on the same row cannot both win.
"""

from __future__ import annotations

import datetime as dt
import functools
import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from authcore.core.clock import Clock, utcnow
from authcore.core.exceptions import StoreUnavailable
from authcore.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


def _store_operation(func):
    @functools.wraps(func)
    def _wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.warning("Refresh token store operation %s failed: %s", func.__name__, exc)
            raise StoreUnavailable(operation=func.__name__) from exc

    return _wrapper


class RefreshTokenStore:
    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self._clock = clock

    def insert(self, token: RefreshToken) -> None:
        """Stage a new row; the unit of work decides when it is flushed or committed."""
        if token is None:
            raise ValueError("refresh_token_required")
        self.db.add(token)

    @_store_operation
    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        if not token_hash:
            raise ValueError("token_hash_required")
        return (
            self.db.query(RefreshToken)
            .options(joinedload(RefreshToken.user))
            .filter(RefreshToken.token_hash == token_hash)
            .first()
        )

    @_store_operation
    def find_latest_active_by_family(self, family_id: UUID) -> RefreshToken | None:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
            .order_by(RefreshToken.created_at.desc())
            .first()
        )

    @_store_operation
    def mark_family_revoked(self, family_id: UUID) -> int:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id, RefreshToken.revoked_at.is_(None))
            .update({RefreshToken.revoked_at: self._clock()}, synchronize_session=False)
        )

    @_store_operation
    def mark_replaced(self, token_id: UUID, new_token_hash: str) -> int:
        """Consume ``token_id`` for a rotation. Returns 0 when it was already rotated or revoked."""
        if not new_token_hash:
            raise ValueError("new_token_hash_required")
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.id == token_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.replaced_by_hash.is_(None),
            )
            .update(
                {
                    RefreshToken.revoked_at: self._clock(),
                    RefreshToken.replaced_by_hash: new_token_hash,
                },
                synchronize_session=False,
            )
        )

    @_store_operation
    def purge_expired_before(self, cutoff: dt.datetime) -> int:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
