"""Limiter key builders.

A key decides what shares a quota. These helpers derive it from the caller's
identity (user token or client IP) and, where needed, the endpoint, so that
different users and different routes are throttled independently.
"""

from __future__ import annotations

import hashlib
from typing import Callable

from fastapi import Request

KeyFunc = Callable[[Request], str]

# Identity prefixes are truncated so full bearer tokens never end up as keys
_USER_ID_CHARS = 16


def extract_client_ip(request: Request) -> str:
    """Best-effort client IP, honouring reverse proxy headers.

    Args:
        request: Incoming request.

    Returns:
        First ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the socket
        peer address, else ``"unknown"``.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def extract_user_id(request: Request) -> str | None:
    """Derive a stable caller identifier from auth material.

    Checks the ``Authorization: Bearer`` header, then the ``access_token`` and
    ``sb-access-token`` cookies. Only a prefix of the token is used.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token[:_USER_ID_CHARS]

    for cookie_name in ("access_token", "sb-access-token"):
        value = request.cookies.get(cookie_name)
        if value:
            return value[:_USER_ID_CHARS]

    return None


def _identity(request: Request) -> str:
    user_id = extract_user_id(request)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{extract_client_ip(request)}"


def default_key(request: Request) -> str:
    """``user:<id>:<path>`` when authenticated, else ``ip:<addr>:<path>``."""
    return f"{_identity(request)}:{request.url.path}"


def ip_key(request: Request) -> str:
    return f"ip:{extract_client_ip(request)}"


def user_key(request: Request) -> str:
    """Per-user key across all endpoints; anonymous callers fall back to IP."""
    return _identity(request)


def endpoint_key(request: Request) -> str:
    return f"{_identity(request)}:{request.method}:{request.url.path}"


def hash_key(key: str) -> str:
    """Hash a limiter key for logging without exposing identities."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]
