from __future__ import annotations

from flask import request


def client_ip(trust_proxy_headers: bool) -> str:
    """First X-Forwarded-For hop when running behind a trusted proxy, else the socket peer."""
    if trust_proxy_headers:
        forwarded = str(request.headers.get("X-Forwarded-For") or "").strip()
        if forwarded:
            return forwarded.split(",", 1)[0].strip()
    return request.remote_addr or ""
