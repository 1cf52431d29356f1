from __future__ import annotations

import logging
from typing import Any

from flask import Flask, g, jsonify
from sqlalchemy.exc import IntegrityError, OperationalError
from werkzeug.exceptions import HTTPException

from app.utils.errors import ApiError

log = logging.getLogger("app")


def _payload(code: str, message: str, details: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": {"code": code, "message": message, "details": details}}
    if getattr(g, "request_id", None):
        payload["request_id"] = g.request_id
    return payload


def init_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(err: ApiError):
        if err.status >= 500:
            log.error("api error code=%s request_id=%s: %s", err.code, getattr(g, "request_id", ""), err.message)
        return jsonify(_payload(err.code, err.message, err.details)), err.status

    @app.errorhandler(IntegrityError)
    def _integrity(err: IntegrityError):
        log.warning("integrity conflict request_id=%s: %s", getattr(g, "request_id", ""), err.orig)
        return jsonify(_payload("CONFLICT", "Conflicting write", {"reason": "INTEGRITY"})), 409

    @app.errorhandler(OperationalError)
    def _db_unavailable(err: OperationalError):
        log.exception("database unavailable request_id=%s", getattr(g, "request_id", ""))
        return jsonify(_payload("DB_UNAVAILABLE", "Database unavailable")), 503

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        status = int(err.code or 500)
        return jsonify(_payload(f"HTTP_{status}", str(err.description or "HTTP error"))), status

    @app.errorhandler(Exception)
    def _unhandled(err: Exception):
        log.exception("Unhandled exception request_id=%s", getattr(g, "request_id", ""))
        return jsonify(_payload("INTERNAL", "Unexpected error")), 500
