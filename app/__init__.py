from __future__ import annotations

import logging
import threading
import time

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError

from app.config import BaseConfig, get_config
from app.db import init_db
from app.middlewares.error_handler import init_error_handlers
from app.middlewares.logging import init_request_logging
from app.middlewares.rate_limit import init_rate_limiting
from app.middlewares.request_id import init_request_id
from app.middlewares.security_headers import init_security_headers
from app.routes.api import api_bp
from app.routes.candidate import candidate_bp
from app.routes.core import core_bp
from app.routes.drives import drives_bp
from app.routes.jobs import jobs_bp
from app.routes.questions import questions_bp
from app.utils.errors import ApiError
from app.utils.logging import setup_logging


def create_app() -> Flask:
    load_dotenv()

    cfg = get_config()
    setup_logging(cfg.LOG_LEVEL)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024

    CORS(
        app,
        origins=cfg.CORS_ORIGINS,
        supports_credentials=cfg.CORS_ALLOW_CREDENTIALS,
        allow_headers=["Content-Type", "X-Request-ID", "X-Actor-Id", "X-Actor-Role", "X-Internal-Token"],
        expose_headers=["X-Request-ID", "Content-Disposition"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        max_age=3600,
    )

    init_request_id(app)
    init_security_headers(app)
    init_rate_limiting(app)
    init_request_logging(app)
    init_error_handlers(app)

    init_db(app)

    app.register_blueprint(core_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(candidate_bp, url_prefix="/api/v1/drive")
    app.register_blueprint(drives_bp, url_prefix="/api/v1/drives")
    app.register_blueprint(questions_bp, url_prefix="/api/v1/questions")
    app.register_blueprint(jobs_bp, url_prefix="/api/v1/jobs")

    _maybe_start_expiry_scheduler(cfg)
    return app


def _maybe_start_expiry_scheduler(cfg: BaseConfig) -> None:
    """
    Periodically auto-submits overdue tests and expires stale links.

    Production recommendation: a single cron calling `POST /api/v1/jobs/expire-sessions`
    with `X-Internal-Token` = INTERNAL_CRON_TOKEN. For simple single-worker deployments
    set ENABLE_SCHEDULER=1 (interval: SCHEDULER_INTERVAL_SECONDS). Reads also expire
    sessions lazily, so a missed tick only delays bookkeeping.
    """

    if not cfg.ENABLE_SCHEDULER or cfg.TESTING:
        return

    logger = logging.getLogger("scheduler")

    def _loop():
        from app.actions import dispatch
        from app.actions.helpers import SYSTEM
        from app.db import SessionLocal

        while True:
            time.sleep(cfg.SCHEDULER_INTERVAL_SECONDS)
            db = SessionLocal()
            try:
                out = dispatch("TEST_SESSIONS_EXPIRE", {}, SYSTEM, db, cfg)
                db.commit()
                logger.info(
                    "TEST_SESSIONS_EXPIRE autoSubmitted=%s linksExpired=%s failed=%s",
                    out.get("autoSubmitted"),
                    out.get("linksExpired"),
                    out.get("failed"),
                )
            except (SQLAlchemyError, ApiError):
                db.rollback()
                logger.exception("TEST_SESSIONS_EXPIRE failed")
            finally:
                db.close()

    t = threading.Thread(target=_loop, name="expiry-scheduler", daemon=True)
    t.start()
