"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

import enum
from typing import Any, Dict, Optional
from uuid import UUID


class AuthCoreException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ConfigurationError(AuthCoreException):
    """Raised when required configuration is missing or invalid. Fatal at startup."""

    def __init__(self, message: str, *, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, status_code=500)


class UnauthorizedReason(str, enum.Enum):
    invalid_credentials = "invalid_credentials"
    email_not_confirmed = "email_not_confirmed"
    refresh_token_missing = "refresh_token_missing"
    invalid_refresh_token = "invalid_refresh_token"
    refresh_token_reused = "refresh_token_reused"
    refresh_token_inactive = "refresh_token_inactive"
    refresh_token_already_used = "refresh_token_already_used"
    invalid_access_token = "invalid_access_token"
    access_token_expired = "access_token_expired"


class Unauthorized(AuthCoreException):
    """Raised for every failed authentication attempt.

    All reasons render the same client body; ``reason`` and ``message`` are kept
    for the audit log and for callers that need to branch on the sub-case.
    """

    def __init__(
        self,
        message: str = "unauthorized",
        *,
        reason: UnauthorizedReason = UnauthorizedReason.invalid_credentials,
    ):
        super().__init__(
            message,
            error_code="UNAUTHORIZED",
            details={"reason": reason.value},
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "Unauthorized",
            "message": "unauthorized",
            "error_code": self.error_code,
            "details": {},
        }


class StoreUnavailable(AuthCoreException):
    """Raised when the token store cannot be read or written."""

    def __init__(self, message: str = "store_unavailable", *, operation: Optional[str] = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message, error_code="STORE_UNAVAILABLE", details=details, status_code=503)


class ConcurrencyConflict(Exception):
    """A conditional update matched no row because another request got there first.

    Internal only: the rotation engine converts it into ``Unauthorized``.
    """

    def __init__(self, token_id: UUID):
        self.token_id = token_id
        super().__init__(f"refresh token {token_id} was already rotated or revoked")
