from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select

from app.actions.helpers import Actor, append_audit, get_candidate, get_drive, new_id, new_token, require_str
from app.actions.roster import validate_roster
from app.actions.statuses import (
    DRIVE_STAGES,
    SESSION_IN_PROGRESS,
    derive_registration_status,
    score_band,
    stage_index,
    status_tone,
)
from app.cache import cache_get, cache_invalidate, cache_set, drive_status_key
from app.models import AptitudeQuestion, CandidateNotification, DriveCandidate, DriveSession, TestSession
from app.utils.datetime import to_iso_utc, utc_now
from app.utils.errors import ApiError, conflict
from app.utils.validators import parse_int

log = logging.getLogger(__name__)

DRIVE_TYPES = {"walk-in", "campus"}

_CONFIG_LIMITS = {
    "aptitudeCutoff": (0, 100, 60),
    "technicalCutoff": (0, 100, 70),
    "testDuration": (1, 600, 60),
    "questionCount": (1, 500, 50),
}


def parse_drive_config(data: dict[str, Any]) -> dict[str, Any]:
    name = str((data or {}).get("name") or "").strip()
    if not name:
        raise ApiError("BAD_REQUEST", "Missing name")

    drive_type = str((data or {}).get("type") or "walk-in").strip().lower()
    if drive_type not in DRIVE_TYPES:
        raise ApiError("BAD_REQUEST", "type must be walk-in|campus")

    out: dict[str, Any] = {
        "name": name,
        "type": drive_type,
        "jobId": str((data or {}).get("jobId") or "").strip(),
        "description": str((data or {}).get("description") or "").strip(),
    }
    for key, (lo, hi, default) in _CONFIG_LIMITS.items():
        raw = (data or {}).get(key)
        out[key] = default if raw is None or str(raw).strip() == "" else parse_int(raw, key, lo=lo, hi=hi)
    return out


def serialize_drive(drive: DriveSession) -> dict[str, Any]:
    return {
        "driveSessionId": drive.driveSessionId,
        "name": drive.name,
        "type": drive.type,
        "jobId": drive.jobId,
        "description": drive.description,
        "aptitudeCutoff": drive.aptitudeCutoff,
        "technicalCutoff": drive.technicalCutoff,
        "testDuration": drive.testDuration,
        "questionCount": drive.questionCount,
        "status": drive.status,
        "counts": {
            "totalCandidates": drive.totalCandidates,
            "registeredCandidates": drive.registeredCandidates,
            "testCompleted": drive.testCompleted,
            "aptitudeQualified": drive.aptitudeQualified,
            "technicalQualified": drive.technicalQualified,
            "interviewScheduled": drive.interviewScheduled,
            "finalSelected": drive.finalSelected,
        },
        "createdAt": drive.createdAt,
        "createdBy": drive.createdBy,
        "updatedAt": drive.updatedAt,
    }


def serialize_candidate(cand: DriveCandidate) -> dict[str, Any]:
    latest = cand.technicalScore if cand.technicalScore is not None else cand.aptitudeScore
    return {
        "driveCandidateId": cand.driveCandidateId,
        "driveSessionId": cand.driveSessionId,
        "name": cand.name,
        "email": cand.email,
        "phone": cand.phone,
        "college": cand.college,
        "registrationStatus": cand.registrationStatus,
        "aptitudeScore": cand.aptitudeScore,
        "technicalScore": cand.technicalScore,
        "currentRound": cand.currentRound,
        "qualificationStatus": cand.qualificationStatus,
        "interviewScheduled": bool(cand.interviewScheduled),
        "interviewScheduledAt": cand.interviewScheduledAt,
        "finalDecision": cand.finalDecision,
        "registeredAt": cand.registeredAt,
        "testCompletedAt": cand.testCompletedAt,
        "scoreBand": score_band(latest),
        "statusTone": status_tone(cand.registrationStatus),
    }


def sync_registration_status(db, cand: DriveCandidate) -> str:
    running = db.execute(
        select(TestSession.testRound)
        .where(
            TestSession.driveCandidateId == cand.driveCandidateId,
            TestSession.status == SESSION_IN_PROGRESS,
        )
        .order_by(TestSession.testRound.desc())
        .limit(1)
    ).scalar_one_or_none()
    cand.registrationStatus = derive_registration_status(cand, in_progress_round=running).value
    return cand.registrationStatus


def update_counts(db, drive_id: str, *, now: Optional[datetime] = None) -> DriveSession:
    """Recompute every denormalized counter from candidate rows; never increments."""
    db.flush()
    drive = get_drive(db, drive_id)

    def _count(*conds) -> int:
        stmt = select(func.count()).select_from(DriveCandidate).where(DriveCandidate.driveSessionId == drive_id, *conds)
        return int(db.execute(stmt).scalar() or 0)

    drive.totalCandidates = _count()
    drive.registeredCandidates = _count(DriveCandidate.registeredAt != "")
    drive.testCompleted = _count(DriveCandidate.aptitudeScore.is_not(None))
    drive.aptitudeQualified = _count(DriveCandidate.currentRound >= 2)
    drive.technicalQualified = _count(DriveCandidate.currentRound >= 3)
    drive.interviewScheduled = _count(DriveCandidate.interviewScheduled.is_(True))
    drive.finalSelected = _count(DriveCandidate.finalDecision == "selected")
    drive.updatedAt = to_iso_utc(now or utc_now())
    db.flush()

    cache_invalidate(drive_status_key(drive_id))
    return drive


def ensure_stage_at_least(db, drive: DriveSession, stage: str, *, actor: Actor | None, now: datetime) -> bool:
    if stage_index(drive.status) >= stage_index(stage):
        return False
    from_status = drive.status
    drive.status = stage
    drive.updatedAt = to_iso_utc(now)
    append_audit(
        db,
        entityType="DRIVE",
        entityId=drive.driveSessionId,
        action="DRIVE_STAGE_ADVANCE",
        fromState=from_status,
        toState=stage,
        stageTag="DRIVE_STAGE",
        actor=actor,
        at=to_iso_utc(now),
    )
    log.info("drive=%s stage %s -> %s", drive.driveSessionId, from_status, stage)
    return True


def advance_stage(db, drive_id: str, stage: str, *, actor: Actor | None, now: Optional[datetime] = None) -> DriveSession:
    now = now or utc_now()
    target = str(stage or "").strip().lower()
    if target not in DRIVE_STAGES:
        raise ApiError("BAD_REQUEST", "status must be one of " + "|".join(DRIVE_STAGES))
    drive = get_drive(db, drive_id, for_update=True)
    if stage_index(target) < stage_index(drive.status):
        raise conflict(f"Drive stage cannot move back from {drive.status} to {target}", reason="STAGE_BACKWARD")
    ensure_stage_at_least(db, drive, target, actor=actor, now=now)
    drive.updatedBy = actor.userId if actor else ""
    cache_invalidate(drive_status_key(drive_id))
    return drive


def import_roster(
    db, cfg, drive: DriveSession, rows: list[dict[str, Any]], *, actor: Actor | None, now: datetime
) -> tuple[list[DriveCandidate], list[dict[str, Any]]]:
    existing = set(
        db.execute(select(DriveCandidate.email).where(DriveCandidate.driveSessionId == drive.driveSessionId)).scalars()
    )
    valid, skipped = validate_roster(rows, existing_emails=existing, max_rows=cfg.MAX_ROSTER_ROWS)

    now_iso = to_iso_utc(now)
    created: list[DriveCandidate] = []
    for row in valid:
        cand = DriveCandidate(
            driveCandidateId=new_id("DC"),
            driveSessionId=drive.driveSessionId,
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            college=row["college"],
            registrationToken=new_token("REG"),
            registrationStatus="invited",
            currentRound=1,
            interviewScheduled=False,
            createdAt=now_iso,
            updatedAt=now_iso,
        )
        created.append(cand)
    db.add_all(created)

    append_audit(
        db,
        entityType="DRIVE",
        entityId=drive.driveSessionId,
        action="ROSTER_IMPORT",
        stageTag="ROSTER_IMPORT",
        remark=f"created={len(created)} skipped={len(skipped)}",
        actor=actor,
        at=now_iso,
        meta={"skippedRows": [s["row"] for s in skipped]},
    )
    log.info("drive=%s roster import created=%s skipped=%s", drive.driveSessionId, len(created), len(skipped))
    return created, skipped


def create_drive(
    db, cfg, *, config: dict[str, Any], roster: list[dict[str, Any]], actor: Actor | None, now: Optional[datetime] = None
) -> dict[str, Any]:
    now = now or utc_now()
    parsed = parse_drive_config(config)
    now_iso = to_iso_utc(now)

    drive = DriveSession(
        driveSessionId=new_id("DRV"),
        status="draft",
        createdAt=now_iso,
        createdBy=actor.userId if actor else "",
        updatedAt=now_iso,
        updatedBy=actor.userId if actor else "",
        **parsed,
    )
    db.add(drive)
    db.flush()

    append_audit(
        db,
        entityType="DRIVE",
        entityId=drive.driveSessionId,
        action="DRIVE_CREATE",
        toState="draft",
        stageTag="DRIVE_CREATE",
        actor=actor,
        at=now_iso,
        meta={k: v for k, v in parsed.items() if k != "description"},
    )

    created, skipped = import_roster(db, cfg, drive, roster, actor=actor, now=now)
    ensure_stage_at_least(db, drive, "registration", actor=actor, now=now)
    update_counts(db, drive.driveSessionId, now=now)

    return {
        "driveSessionId": drive.driveSessionId,
        "candidateCount": len(created),
        "skipped": skipped,
        "drive": serialize_drive(drive),
    }


def delete_drive(db, drive_id: str, *, actor: Actor | None) -> dict[str, Any]:
    drive = get_drive(db, drive_id, for_update=True)
    counts = {}
    # Children first; the drive row goes last.
    for label, model in (
        ("notifications", CandidateNotification),
        ("testSessions", TestSession),
        ("candidates", DriveCandidate),
        ("questions", AptitudeQuestion),
    ):
        res = db.execute(delete(model).where(model.driveSessionId == drive.driveSessionId))
        counts[label] = int(res.rowcount or 0)
    db.delete(drive)

    append_audit(
        db,
        entityType="DRIVE",
        entityId=drive_id,
        action="DRIVE_DELETE",
        fromState=drive.status,
        toState="deleted",
        stageTag="DRIVE_DELETE",
        actor=actor,
        meta=counts,
    )
    cache_invalidate(drive_status_key(drive_id))
    log.info("drive=%s deleted %s", drive_id, counts)
    return {"deleted": True, "driveSessionId": drive_id, **counts}


def drive_status(db, drive_id: str) -> dict[str, Any]:
    """Single authoritative snapshot of a drive: stage, counters and per-status breakdown."""
    key = drive_status_key(drive_id)
    cached = cache_get(key)
    if cached is not None:
        return cached

    drive = get_drive(db, drive_id)
    rows = db.execute(
        select(DriveCandidate.registrationStatus, func.count())
        .where(DriveCandidate.driveSessionId == drive_id)
        .group_by(DriveCandidate.registrationStatus)
    ).all()
    by_status = {str(status): int(n) for status, n in rows}

    sessions = db.execute(
        select(TestSession.testRound, TestSession.status, func.count())
        .where(TestSession.driveSessionId == drive_id)
        .group_by(TestSession.testRound, TestSession.status)
    ).all()
    by_round: dict[str, dict[str, int]] = {}
    for test_round, status, n in sessions:
        by_round.setdefault(str(test_round), {})[str(status)] = int(n)

    out = {
        "drive": serialize_drive(drive),
        "registrationStatus": by_status,
        "testSessions": by_round,
    }
    cache_set(key, out)
    return out


def registration_info(db, token: str) -> dict[str, Any]:
    cand = _candidate_by_registration_token(db, token)
    drive = get_drive(db, cand.driveSessionId)
    return {
        "driveName": drive.name,
        "driveType": drive.type,
        "driveStatus": drive.status,
        "candidateName": cand.name,
        "registered": bool(cand.registeredAt),
        "registrationStatus": cand.registrationStatus,
    }


def _candidate_by_registration_token(db, token: str) -> DriveCandidate:
    tok = str(token or "").strip()
    cand = None
    if tok:
        cand = db.execute(select(DriveCandidate).where(DriveCandidate.registrationToken == tok)).scalar_one_or_none()
    if not cand:
        raise ApiError("NOT_FOUND", "Registration link is invalid", status=404)
    return cand


def register_candidate(
    db, cfg, token: str, details: dict[str, Any] | None = None, *, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Confirms a roster entry and hands out the aptitude test. Safe to repeat."""
    from app.actions.test_sessions import issue_session, session_link

    now = now or utc_now()
    cand = _candidate_by_registration_token(db, token)
    drive = get_drive(db, cand.driveSessionId)
    if drive.status in {"draft", "completed"}:
        raise conflict("Drive is not accepting registrations", reason="DRIVE_CLOSED")

    already = bool(cand.registeredAt)
    if not already:
        for field in ("name", "phone", "college"):
            value = str((details or {}).get(field) or "").strip()
            if value:
                setattr(cand, field, value)
        cand.registeredAt = to_iso_utc(now)
        cand.updatedAt = cand.registeredAt
        sync_registration_status(db, cand)
        append_audit(
            db,
            entityType="DRIVE_CANDIDATE",
            entityId=cand.driveCandidateId,
            action="CANDIDATE_REGISTER",
            fromState="invited",
            toState=cand.registrationStatus,
            stageTag="REGISTRATION",
            actor=None,
            at=cand.registeredAt,
        )

    out: dict[str, Any] = {
        "driveCandidateId": cand.driveCandidateId,
        "alreadyRegistered": already,
        "testToken": None,
        "testLink": None,
    }
    if cand.aptitudeScore is None:
        session = issue_session(db, cfg, candidate_id=cand.driveCandidateId, round_no=1, actor=None, now=now)
        out["testToken"] = session.testToken
        out["testLink"] = session_link(cfg, session.testToken)
    update_counts(db, drive.driveSessionId, now=now)
    out["registrationStatus"] = cand.registrationStatus
    return out


def list_drives(db, *, status: str = "") -> list[DriveSession]:
    stmt = select(DriveSession).order_by(DriveSession.createdAt.desc())
    if status:
        stmt = stmt.where(DriveSession.status == status)
    return list(db.execute(stmt).scalars())


def registration_link(cfg, token: str) -> str:
    return f"{cfg.PUBLIC_BASE_URL}/drive/register/{token}"


# --- action handlers -------------------------------------------------------


def drive_create(data, auth: Actor | None, db, cfg):
    config = (data or {}).get("config")
    if not isinstance(config, dict):
        config = data or {}
    roster = (data or {}).get("roster") or []
    if not isinstance(roster, list):
        raise ApiError("BAD_REQUEST", "roster must be a list of rows")
    return create_drive(db, cfg, config=config, roster=roster, actor=auth)


def drive_get(data, auth: Actor | None, db, cfg):
    drive = get_drive(db, require_str(data, "driveSessionId"))
    return serialize_drive(drive)


def drive_list(data, auth: Actor | None, db, cfg):
    status = str((data or {}).get("status") or "").strip().lower()
    return {"items": [serialize_drive(d) for d in list_drives(db, status=status)]}


def drive_delete(data, auth: Actor | None, db, cfg):
    return delete_drive(db, require_str(data, "driveSessionId"), actor=auth)


def drive_stage_set(data, auth: Actor | None, db, cfg):
    drive = advance_stage(db, require_str(data, "driveSessionId"), require_str(data, "status"), actor=auth)
    return serialize_drive(drive)


def drive_roster_import(data, auth: Actor | None, db, cfg):
    drive = get_drive(db, require_str(data, "driveSessionId"), for_update=True)
    if drive.status == "completed":
        raise conflict("Drive is completed", reason="DRIVE_CLOSED")
    roster = (data or {}).get("roster") or []
    if not isinstance(roster, list):
        raise ApiError("BAD_REQUEST", "roster must be a list of rows")
    now = utc_now()
    created, skipped = import_roster(db, cfg, drive, roster, actor=auth, now=now)
    update_counts(db, drive.driveSessionId, now=now)
    return {"candidateCount": len(created), "skipped": skipped, "totalCandidates": drive.totalCandidates}


def drive_status_get(data, auth: Actor | None, db, cfg):
    return drive_status(db, require_str(data, "driveSessionId"))


def candidate_get(data, auth: Actor | None, db, cfg):
    cand = get_candidate(db, require_str(data, "driveCandidateId"), drive_id=str((data or {}).get("driveSessionId") or ""))
    return serialize_candidate(cand)


def registration_get(data, auth: Actor | None, db, cfg):
    return registration_info(db, require_str(data, "token"))


def registration_submit(data, auth: Actor | None, db, cfg):
    return register_candidate(db, cfg, require_str(data, "token"), data)
