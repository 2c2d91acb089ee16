"""Refresh token model used for session rotation, reuse detection and revocation."""

from __future__ import annotations

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authcore.core.clock import as_utc, utcnow
from authcore.db.base import Base
from authcore.models.user import User

TOKEN_HASH_LENGTH = 64
USER_AGENT_MAX_LENGTH = 500
IP_ADDRESS_MAX_LENGTH = 45


class RefreshToken(Base):
    """One issued refresh token. Only its SHA-256 hash is stored.

    ``family_id`` links every token rotated out of one login, and
    ``family_expires_at`` is copied unchanged into each successor so the whole
    lineage shares one hard ceiling. ``replaced_by_hash`` marks a token that
    was consumed by a rotation.
    """

    __tablename__ = "refresh_tokens"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(TOKEN_HASH_LENGTH), unique=True, nullable=False)
    family_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    family_expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    revoked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    replaced_by_hash: Mapped[str | None] = mapped_column(String(TOKEN_HASH_LENGTH), nullable=True)
    user_agent: Mapped[str] = mapped_column(String(USER_AGENT_MAX_LENGTH), default="")
    ip_address: Mapped[str] = mapped_column(String(IP_ADDRESS_MAX_LENGTH), default="")

    user: Mapped[User] = relationship(User)

    @property
    def is_replaced(self) -> bool:
        return bool(self.replaced_by_hash)

    def is_active_at(self, now: dt.datetime) -> bool:
        if self.revoked_at is not None:
            return False
        now = as_utc(now)
        return as_utc(self.expires_at) > now and as_utc(self.family_expires_at) > now

    @property
    def is_active(self) -> bool:
        return self.is_active_at(utcnow())
