"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]

NON_PRODUCTION_ENVS = {"development", "test"}


class Settings(BaseSettings):
    APP_NAME: str = "Auth Core"
    ENV: str = "development"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/authcore"
    LOG_LEVEL: str = "INFO"
    AUDIT_LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    # Base64 encoded, at least 256 bits. The JWT_SIGNING_KEY environment variable wins over .env.
    JWT_SIGNING_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "authcore"
    JWT_AUDIENCE: str = "authcore-clients"

    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15, ge=1, le=1440)
    REFRESH_TOKEN_EXPIRE_MINUTES: int = Field(default=43200, ge=1, le=43200)
    REFRESH_FAMILY_EXPIRE_MINUTES: int = Field(default=43200, ge=1, le=43200)

    REFRESH_TOKEN_RETENTION_DAYS: int = Field(default=7, ge=0)
    REFRESH_PURGE_ENABLED: bool = True
    REFRESH_PURGE_INTERVAL_SECONDS: int = 3600
    REFRESH_PURGE_STARTUP_DELAY_SECONDS: int = 30

    ACCESS_COOKIE_NAME: str = "access_token"
    REFRESH_COOKIE_NAME: str = "refresh_token"
    COOKIE_DOMAIN: str = ""
    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "none"

    LOGIN_MAX_FAILED_ATTEMPTS: int = Field(default=5, ge=1)
    LOGIN_LOCKOUT_MINUTES: int = Field(default=15, ge=1)

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENV.strip().lower() not in NON_PRODUCTION_ENVS

    @property
    def allows_ephemeral_signing_key(self) -> bool:
        return not self.is_production


settings = Settings()
