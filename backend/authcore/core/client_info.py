"""Client context (user agent and IP address) recorded on refresh tokens for auditing."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass

from fastapi import Request

from authcore.core.sanitize import clean_single_line, clip
from authcore.models.refresh_token import USER_AGENT_MAX_LENGTH

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
# Checked in order; the first valid address wins before falling back to the socket peer.
FORWARDING_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


@dataclass(frozen=True)
class ClientContext:
    user_agent: str
    ip_address: str


def get_user_agent(request: Request) -> str:
    user_agent = clean_single_line(request.headers.get("user-agent"))
    if not user_agent:
        return UNKNOWN
    if len(user_agent) > USER_AGENT_MAX_LENGTH:
        original_length = len(user_agent)
        user_agent = clip(user_agent, USER_AGENT_MAX_LENGTH, suffix="...")
        logger.warning("User agent truncated from %s to %s", original_length, len(user_agent))
    return user_agent


def normalize_ip_candidate(candidate: str) -> str:
    candidate = (candidate or "").strip()
    if not candidate:
        return candidate
    # [2001:db8::1]:443
    if candidate.startswith("[") and "]" in candidate:
        return candidate[1 : candidate.index("]")]
    # 203.0.113.10:443
    if candidate.count(":") == 1:
        return candidate.split(":", 1)[0]
    return candidate


def _parse_ip(value: str) -> str | None:
    try:
        parsed = ipaddress.ip_address(value)
    except ValueError:
        return None
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return str(parsed.ipv4_mapped)
    return str(parsed)


def get_ip_address(request: Request) -> str:
    for header in FORWARDING_HEADERS:
        raw = request.headers.get(header)
        if not raw:
            continue
        # X-Forwarded-For is "client, proxy1, proxy2"; the first entry is the client.
        first = raw.split(",")[0]
        parsed = _parse_ip(normalize_ip_candidate(first))
        if parsed:
            return parsed

    if request.client and request.client.host:
        return _parse_ip(request.client.host) or request.client.host
    return UNKNOWN


def get_client_info(request: Request) -> ClientContext:
    return ClientContext(user_agent=get_user_agent(request), ip_address=get_ip_address(request))
