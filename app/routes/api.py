from __future__ import annotations

import base64
from typing import Any

from flask import Blueprint, jsonify

from app.routes.common import run_action
from app.utils.errors import ApiError
from app.utils.validators import require_json

api_bp = Blueprint("api", __name__)


def _jsonable(out: Any) -> Any:
    # Exports carry raw bytes; the RPC surface ships them base64-encoded.
    if isinstance(out, dict) and isinstance(out.get("content"), bytes):
        encoded = base64.b64encode(out["content"]).decode("ascii")
        out = {k: v for k, v in out.items() if k != "content"}
        out["contentBase64"] = encoded
    return out


@api_bp.post("/api")
def api_route():
    body = require_json()
    action = str(body.get("action") or "").upper().strip()
    if not action:
        raise ApiError("BAD_REQUEST", "Missing action")
    data = body.get("data") or {}
    if not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be an object")

    out = run_action(action, data, allow_internal=True)
    return jsonify({"success": True, "data": _jsonable(out)})
