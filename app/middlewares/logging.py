from __future__ import annotations

import json
import logging
import time
from typing import Any

from flask import Flask, g, request

from app.utils.net import client_ip


def init_request_logging(app: Flask) -> None:
    logger = logging.getLogger("app.request")
    cfg = app.config["CFG"]

    @app.after_request
    def _log(resp):
        start = getattr(g, "start_ts", None)
        latency_ms = int((time.monotonic() - start) * 1000) if isinstance(start, (int, float)) else None
        actor = getattr(g, "actor", None)

        data: dict[str, Any] = {
            "type": "request",
            "request_id": getattr(g, "request_id", ""),
            "method": request.method,
            # Candidate paths embed bearer tokens; log the route, not the token.
            "path": request.url_rule.rule if request.url_rule is not None else request.path,
            "status": resp.status_code,
            "latency_ms": latency_ms,
            "ip": client_ip(cfg.TRUST_PROXY_HEADERS),
            "actor": actor.userId if actor else "PUBLIC",
        }

        logger.info(json.dumps(data, separators=(",", ":")))
        return resp
