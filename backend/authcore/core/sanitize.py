"""Input sanitization helpers for request payloads and audit metadata."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")


def clean_single_line(value: str | None) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    value = "".join(ch for ch in value if unicodedata.category(ch) != "Cc" or ch in "\r\n\t")
    return _WHITESPACE_RE.sub(" ", value).strip()


def clean_email(value: str | None) -> str:
    return clean_single_line(value).lower()


def clip(value: str | None, max_length: int, *, suffix: str = "") -> str:
    """Trim ``value`` and cut it to ``max_length`` characters, suffix included."""
    text = (value or "").strip()
    if len(text) <= max_length:
        return text
    if not suffix:
        return text[:max_length]
    return text[: max(0, max_length - len(suffix))] + suffix
