"""Logout: revoke the whole refresh-token family behind a presented token."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authcore.core.logging import get_audit_logger
from authcore.core.security import hash_refresh_token
from authcore.db.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)
audit = get_audit_logger()


@dataclass(frozen=True)
class LogoutResult:
    revoked_count: int = 0
    # Always true: the caller clears client-side session markers even when nothing was revoked.
    clear_client_session: bool = True


class SessionTerminator:
    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    def logout(self, raw_refresh_token: str | None) -> LogoutResult:
        """Never raises; a broken store must not keep a user from ending their session."""
        if not raw_refresh_token or not raw_refresh_token.strip():
            return LogoutResult()

        try:
            stored = self._uow.refresh_tokens.find_by_hash(hash_refresh_token(raw_refresh_token))
            if stored is None:
                return LogoutResult()

            user_id = stored.user_id
            family_id = stored.family_id
            revoked = self._uow.refresh_tokens.mark_family_revoked(family_id)
            self._uow.save_changes()
        except Exception as exc:  # noqa: BLE001
            self._uow.discard()
            logger.warning("Logout encountered an error before revoking the session: %s", exc)
            return LogoutResult()

        audit.info("Refresh family revoked on logout: user=%s family=%s revoked=%s", user_id, family_id, revoked)
        return LogoutResult(revoked_count=revoked)
