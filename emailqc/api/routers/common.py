"""Helpers shared by the API routers."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

from fastapi import HTTPException, Request

from emailqc.config import settings
from emailqc.parser import is_host_allowed


def client_address(request: Request) -> str:
    """Caller address used as the rate-limit key.

    Proxy headers (first ``X-Forwarded-For`` hop, then ``X-Real-IP``) are
    read only when ``settings.trust_proxy_headers`` is on; otherwise the
    socket peer is used, so clients cannot pick their own key.
    """
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    """Raise 429 when the caller has exhausted its submission window."""
    decision = request.app.state.rate_limiter.check(client_address(request))
    if not decision.allowed:
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again later.")


def validate_preview_url(value: Optional[str]) -> str:
    """Return *value* if it is an absolute http(s) URL on the preview allow-list."""
    if not value:
        raise HTTPException(status_code=400, detail="brazeUrl is required")
    try:
        parts = urlsplit(value)
        hostname = parts.hostname
    except ValueError:
        hostname = None
        parts = None
    if parts is None or parts.scheme.lower() not in ("http", "https") or not hostname:
        raise HTTPException(status_code=400, detail="brazeUrl must be a valid URL")
    if not is_host_allowed(value):
        raise HTTPException(status_code=400, detail="brazeUrl host is not permitted")
    return value
