from __future__ import annotations

import base64
import logging

import pytest

from authcore.core.config import Settings
from authcore.core.exceptions import ConfigurationError
from authcore.core.keys import SIGNING_KEY_ENV_VAR, SigningKeyProvider

ENV_KEY = base64.b64encode(b"E" * 32).decode("ascii")
CONFIGURED_KEY = base64.b64encode(b"C" * 48).decode("ascii")


def test_environment_variable_wins_over_configured_key() -> None:
    provider = SigningKeyProvider(configured_key=CONFIGURED_KEY, environ={SIGNING_KEY_ENV_VAR: ENV_KEY})

    key = provider.get_signing_key()
    assert key.secret == b"E" * 32
    assert not key.ephemeral


def test_configured_key_used_when_environment_is_empty() -> None:
    provider = SigningKeyProvider(configured_key=CONFIGURED_KEY, environ={SIGNING_KEY_ENV_VAR: "  "})

    key = provider.get_signing_key()
    assert key.secret == b"C" * 48
    assert len(key.key_id) == 8
    assert provider.get_validation_key() == key


def test_key_id_is_stable_for_the_same_secret() -> None:
    first = SigningKeyProvider(configured_key=CONFIGURED_KEY, environ={})
    second = SigningKeyProvider(configured_key=CONFIGURED_KEY, environ={})
    other = SigningKeyProvider(configured_key=ENV_KEY, environ={})

    assert first.get_signing_key().key_id == second.get_signing_key().key_id
    assert first.get_signing_key().key_id != other.get_signing_key().key_id


def test_key_shorter_than_256_bits_is_rejected() -> None:
    short_key = base64.b64encode(b"s" * 16).decode("ascii")

    with pytest.raises(ConfigurationError) as exc_info:
        SigningKeyProvider(configured_key=short_key, environ={})

    assert "too_short" in exc_info.value.message
    assert exc_info.value.status_code == 500


def test_non_base64_key_is_rejected() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        SigningKeyProvider(environ={SIGNING_KEY_ENV_VAR: "not base64 at all!"})

    assert exc_info.value.details == {"setting": SIGNING_KEY_ENV_VAR}


def test_missing_key_fails_without_ephemeral_fallback() -> None:
    with pytest.raises(ConfigurationError):
        SigningKeyProvider(allow_ephemeral=False, environ={})


def test_missing_key_uses_logged_ephemeral_key_when_allowed(caplog) -> None:  # noqa: ANN001
    with caplog.at_level(logging.WARNING, logger="authcore.core.keys"):
        provider = SigningKeyProvider(allow_ephemeral=True, environ={})

    key = provider.get_signing_key()
    assert key.ephemeral
    assert len(key.secret) == 32
    assert any("ephemeral" in record.getMessage() for record in caplog.records)


def test_production_settings_never_fall_back_to_ephemeral_key() -> None:
    production = Settings(ENV="production", JWT_SIGNING_KEY="")

    with pytest.raises(ConfigurationError):
        SigningKeyProvider.from_settings(production, environ={})


def test_development_settings_allow_ephemeral_key() -> None:
    development = Settings(ENV="development", JWT_SIGNING_KEY="")

    provider = SigningKeyProvider.from_settings(development, environ={})
    assert provider.get_signing_key().ephemeral
