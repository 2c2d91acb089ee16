"""Logging setup for the application and the security audit trail."""

from __future__ import annotations

import logging
import os

AUDIT_LOGGER_NAME = "authcore.audit"


def setup_logging(level: str | None = None, *, audit_level: str | None = None) -> None:
    audit_level_name = (audit_level or os.getenv("AUDIT_LOG_LEVEL", "INFO")).upper()
    logging.getLogger(AUDIT_LOGGER_NAME).setLevel(audit_level_name)

    if logging.getLogger().handlers:
        return

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level_name,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)
