from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from app.db import ping_db
from app.utils.datetime import iso_utc_now

core_bp = Blueprint("core", __name__)


@core_bp.get("/health")
def health():
    """Liveness for the load balancer; 503 only when the database is unreachable."""
    cfg = current_app.config["CFG"]
    db_ok = ping_db()
    body = {
        "status": "ok" if db_ok else "degraded",
        "db": "ok" if db_ok else "error",
        # Mail relay outages degrade delivery only, never qualification.
        "notifier": "webhook" if cfg.NOTIFY_WEBHOOK_URL else "log",
        "expiryScheduler": bool(cfg.ENABLE_SCHEDULER and not cfg.TESTING),
        "version": cfg.APP_VERSION,
        "time": iso_utc_now(),
    }
    return jsonify(body), (200 if db_ok else 503)


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"service": "drive-qualification", "version": cfg.APP_VERSION, "env": cfg.ENV, "time": iso_utc_now()})
