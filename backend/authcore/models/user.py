"""User model: the principal that owns sessions and access-token claims."""

from __future__ import annotations

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from authcore.core.clock import utcnow
from authcore.db.base import Base, JSONType


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    org_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    roles: Mapped[list[str]] = mapped_column(JSONType, default=list)
    # Custom claims copied into access tokens; "full_name" becomes given_name.
    claims: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    failed_login_count: Mapped[int] = mapped_column(Integer, default=0)
    lockout_until: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
