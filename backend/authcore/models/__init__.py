"""Convenience imports for Alembic metadata discovery."""

from authcore.models.user import User
from authcore.models.refresh_token import RefreshToken

__all__ = ["RefreshToken", "User"]
