from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select

from app.models import AuditLog, DriveCandidate, DriveSession
from app.utils.datetime import iso_utc_now
from app.utils.errors import ApiError, not_found


@dataclass(frozen=True)
class Actor:
    userId: str
    role: str


SYSTEM = Actor(userId="SYSTEM", role="SYSTEM")

_PII_KEYS = {"token", "testToken", "registrationToken", "email", "name", "phone", "mobile", "college"}


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def new_token(prefix: str) -> str:
    # 128 random bits; tokens are never reissued.
    return f"{prefix}-{os.urandom(16).hex()}"


def safe_json_string(value: Any, fallback: str = "") -> str:
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError):
        return fallback


def parse_json(raw: Any, fallback: Any) -> Any:
    s = str(raw or "").strip()
    if not s:
        return fallback
    try:
        return json.loads(s)
    except ValueError:
        return fallback


def redact_for_audit(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if k in _PII_KEYS:
                out[k] = "[REDACTED]"
            elif k in {"rows", "roster", "answers", "items"} and isinstance(v, (list, dict)):
                out[k] = f"[OMITTED:{len(v)}]"
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(obj, list):
        return [redact_for_audit(v) for v in obj]
    return obj


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    stageTag: str,
    actor: Actor | None,
    fromState: str = "",
    toState: str = "",
    remark: str = "",
    meta: Any = None,
    at: Optional[str] = None,
) -> None:
    if meta is None:
        meta_json = "{}"
    elif isinstance(meta, str):
        meta_json = meta
    else:
        meta_json = safe_json_string(redact_for_audit(meta), "{}")

    db.add(
        AuditLog(
            logId=new_id("LOG"),
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or "").upper(),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId if actor else "PUBLIC"),
            actorRole=str(actor.role if actor else "PUBLIC"),
            at=str(at or iso_utc_now()),
            metaJson=meta_json,
        )
    )


def get_drive(db, drive_id: str, *, for_update: bool = False) -> DriveSession:
    drive_id = str(drive_id or "").strip()
    stmt = select(DriveSession).where(DriveSession.driveSessionId == drive_id)
    if for_update:
        stmt = stmt.with_for_update()
    drive = db.execute(stmt).scalar_one_or_none()
    if not drive:
        raise not_found("Drive session", drive_id)
    return drive


def get_candidate(db, candidate_id: str, *, drive_id: str = "") -> DriveCandidate:
    candidate_id = str(candidate_id or "").strip()
    stmt = select(DriveCandidate).where(DriveCandidate.driveCandidateId == candidate_id)
    if drive_id:
        stmt = stmt.where(DriveCandidate.driveSessionId == drive_id)
    cand = db.execute(stmt).scalar_one_or_none()
    if not cand:
        raise not_found("Candidate", candidate_id)
    return cand


def require_str(data: Any, key: str) -> str:
    value = str((data or {}).get(key) or "").strip()
    if not value:
        raise ApiError("BAD_REQUEST", f"Missing {key}")
    return value
