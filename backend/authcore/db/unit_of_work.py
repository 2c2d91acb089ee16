"""Unit of work: explicit begin/commit/rollback around refresh-token store changes."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.core.clock import Clock, utcnow
from authcore.core.exceptions import StoreUnavailable
from authcore.db.refresh_token_store import RefreshTokenStore

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Wraps one SQLAlchemy session.

    Outside an explicit transaction ``save_changes`` commits immediately.
    Between ``begin`` and ``commit`` it only flushes, so staged inserts and
    conditional updates land together or not at all.
    """

    def __init__(self, db: Session, *, clock: Clock = utcnow) -> None:
        self.db = db
        self.refresh_tokens = RefreshTokenStore(db, clock=clock)
        self._transaction_open = False

    @property
    def in_transaction(self) -> bool:
        return self._transaction_open

    def save_changes(self) -> None:
        try:
            if self._transaction_open:
                self.db.flush()
            else:
                self.db.commit()
        except SQLAlchemyError as exc:
            self.rollback()
            raise StoreUnavailable(operation="save_changes") from exc

    def begin(self) -> None:
        if self._transaction_open:
            raise RuntimeError("transaction_already_in_progress")
        if not self.db.in_transaction():
            self.db.begin()
        self._transaction_open = True

    def commit(self) -> None:
        if not self._transaction_open:
            raise RuntimeError("no_transaction_in_progress")
        try:
            self.db.flush()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable(operation="commit") from exc
        finally:
            self._transaction_open = False

    def rollback(self) -> None:
        self._transaction_open = False
        self.db.rollback()

    def discard(self) -> None:
        """Best-effort rollback for error paths that must not raise."""
        try:
            self.rollback()
        except SQLAlchemyError as exc:
            logger.debug("Rollback after failure also failed: %s", exc)
