from __future__ import annotations

from flask import Flask, request

from app.utils.net import client_ip
from app.utils.rate_limiter import InMemoryRateLimiter

_limiter = InMemoryRateLimiter()

CANDIDATE_PREFIX = "/api/v1/drive/"


def reset_rate_limits() -> None:
    _limiter.reset()


def init_rate_limiting(app: Flask) -> None:
    cfg = app.config["CFG"]

    @app.before_request
    def _rate_limit():
        path = request.path or ""
        if path in {"/health", "/version"} or request.method == "OPTIONS":
            return None

        ip = client_ip(cfg.TRUST_PROXY_HEADERS)

        # Candidate links are public; throttle them per IP and per token path.
        if path.startswith(CANDIDATE_PREFIX):
            _limiter.check(f"{ip}:CANDIDATE", cfg.RATE_LIMIT_CANDIDATE)
            _limiter.check(f"{ip}:PATH:{path}", cfg.RATE_LIMIT_DEFAULT)
            return None

        if path.startswith("/api"):
            _limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
            _limiter.check(f"{ip}:PATH:{request.method}:{path}", cfg.RATE_LIMIT_DEFAULT)
            return None

        return None
