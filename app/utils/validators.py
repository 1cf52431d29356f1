from __future__ import annotations

import re
from typing import Any, Optional

from flask import request

from app.utils.errors import ApiError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def require_json() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object", status=400)
    return body


def optional_json() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Any) -> bool:
    email = normalize_email(value)
    return bool(email) and bool(_EMAIL_RE.match(email))


def validate_email(value: Any) -> str:
    email = normalize_email(value)
    if not email or not _EMAIL_RE.match(email):
        raise ApiError("BAD_REQUEST", "Invalid email", status=400)
    return email


def parse_int(value: Any, field: str, *, lo: int, hi: int) -> int:
    if isinstance(value, bool):
        raise ApiError("BAD_REQUEST", f"{field} must be an integer", status=400)
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError) as e:
        raise ApiError("BAD_REQUEST", f"{field} must be an integer", status=400) from e
    if n < lo or n > hi:
        raise ApiError("BAD_REQUEST", f"{field} must be between {lo} and {hi}", status=400)
    return n


def parse_optional_int(value: Any, field: str, *, lo: int, hi: int) -> Optional[int]:
    """None, "" and "all" mean unconstrained."""
    if value is None:
        return None
    s = str(value).strip().lower()
    if s in {"", "all"}:
        return None
    return parse_int(s, field, lo=lo, hi=hi)
