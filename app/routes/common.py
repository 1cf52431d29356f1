from __future__ import annotations

import hmac
import logging
from typing import Any

from flask import current_app, g, jsonify, request

from app.actions import INTERNAL_ACTIONS, dispatch, is_public_action
from app.actions.helpers import Actor, SYSTEM
from app.db import SessionLocal
from app.utils.errors import ApiError

log = logging.getLogger("app.api")


def actor_from_request() -> Actor:
    """
    Operator identity is established upstream (gateway / SSO); the proxy forwards it
    as headers. Missing headers fall back to a generic operator.
    """

    user_id = str(request.headers.get("X-Actor-Id") or "").strip() or "OPERATOR"
    role = str(request.headers.get("X-Actor-Role") or "").strip().upper() or "OPERATOR"
    return Actor(userId=user_id, role=role)


def has_internal_token() -> bool:
    cfg = current_app.config["CFG"]
    expected = str(cfg.INTERNAL_CRON_TOKEN or "").strip()
    provided = str(request.headers.get("X-Internal-Token") or "").strip()
    return bool(expected) and bool(provided) and hmac.compare_digest(expected, provided)


def run_action(action: str, data: dict[str, Any] | None, *, allow_internal: bool = False) -> Any:
    """Runs one action in its own session: commit on success, rollback on any error."""
    cfg = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()

    if action_u in INTERNAL_ACTIONS:
        if not (allow_internal and has_internal_token()):
            raise ApiError("FORBIDDEN", "Internal token required", status=403)
        actor: Actor | None = SYSTEM
    elif is_public_action(action_u):
        actor = None
    else:
        actor = actor_from_request()
    g.actor = actor

    db = SessionLocal()
    try:
        out = dispatch(action_u, data or {}, actor, db, cfg)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    log.info(
        "request_id=%s action=%s actor=%s",
        getattr(g, "request_id", ""),
        action_u,
        actor.userId if actor else "PUBLIC",
    )
    return out


def rest_handle(action: str, data: dict[str, Any] | None = None, *, allow_internal: bool = False, status: int = 200):
    out = run_action(action, data, allow_internal=allow_internal)
    return jsonify({"success": True, "data": out}), status


def query_args() -> dict[str, Any]:
    return {k: v for k, v in request.args.items()}
