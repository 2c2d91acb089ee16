"""Signing key resolution for access tokens."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Mapping

from authcore.core.config import Settings
from authcore.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SIGNING_KEY_ENV_VAR = "JWT_SIGNING_KEY"
MIN_KEY_BYTES = 32
KEY_ID_LENGTH = 8


@dataclass(frozen=True)
class SigningKey:
    secret: bytes = field(repr=False)
    key_id: str
    ephemeral: bool = False


def _derive_key_id(secret: bytes) -> str:
    digest = hashlib.sha256(secret).digest()
    return base64.b64encode(digest).decode("ascii")[:KEY_ID_LENGTH]


def _decode_configured_key(value: str, *, source: str) -> bytes:
    try:
        key_bytes = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("jwt_signing_key_not_base64", setting=source) from exc
    if len(key_bytes) < MIN_KEY_BYTES:
        raise ConfigurationError(
            f"jwt_signing_key_too_short: {len(key_bytes) * 8} bits, at least {MIN_KEY_BYTES * 8} required",
            setting=source,
        )
    return key_bytes


class SigningKeyProvider:
    """Resolves the HMAC signing key once and hands it out for signing and validation.

    Resolution order: the ``JWT_SIGNING_KEY`` environment variable, then the
    configured key (settings / ``.env``), then a random ephemeral key when the
    environment allows it. Anything else is a ``ConfigurationError``.
    """

    def __init__(
        self,
        *,
        configured_key: str | None = None,
        allow_ephemeral: bool = False,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._key = self._resolve(
            configured_key=configured_key,
            allow_ephemeral=allow_ephemeral,
            environ=os.environ if environ is None else environ,
        )

    @classmethod
    def from_settings(cls, source: Settings, *, environ: Mapping[str, str] | None = None) -> SigningKeyProvider:
        return cls(
            configured_key=source.JWT_SIGNING_KEY,
            allow_ephemeral=source.allows_ephemeral_signing_key,
            environ=environ,
        )

    def get_signing_key(self) -> SigningKey:
        return self._key

    def get_validation_key(self) -> SigningKey:
        # Same symmetric key for now; split so an asymmetric pair can slot in later.
        return self._key

    @staticmethod
    def _resolve(*, configured_key: str | None, allow_ephemeral: bool, environ: Mapping[str, str]) -> SigningKey:
        env_value = (environ.get(SIGNING_KEY_ENV_VAR) or "").strip()
        if env_value:
            secret = _decode_configured_key(env_value, source=SIGNING_KEY_ENV_VAR)
            return SigningKey(secret=secret, key_id=_derive_key_id(secret))

        config_value = (configured_key or "").strip()
        if config_value:
            secret = _decode_configured_key(config_value, source="settings.JWT_SIGNING_KEY")
            return SigningKey(secret=secret, key_id=_derive_key_id(secret))

        if allow_ephemeral:
            secret = secrets.token_bytes(MIN_KEY_BYTES)
            key = SigningKey(secret=secret, key_id=_derive_key_id(secret), ephemeral=True)
            logger.warning("No JWT signing key configured; using ephemeral key %s (tokens die with the process)", key.key_id)
            return key

        raise ConfigurationError(
            "jwt_signing_key_missing: set JWT_SIGNING_KEY to a base64 encoded key of at least 256 bits",
            setting=SIGNING_KEY_ENV_VAR,
        )
