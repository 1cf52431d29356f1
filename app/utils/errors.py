from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ApiError(Exception):
    code: str
    message: str
    status: int = 400
    details: Any | None = None


def not_found(what: str, ident: str = "") -> ApiError:
    msg = f"{what} not found" if not ident else f"{what} not found: {ident}"
    return ApiError("NOT_FOUND", msg, status=404)


def conflict(message: str, *, reason: str = "", details: Any | None = None) -> ApiError:
    if reason:
        details = {"reason": reason, **(details or {})}
    return ApiError("CONFLICT", message, status=409, details=details)
