from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.actions.helpers import Actor, append_audit, get_candidate, get_drive, require_str
from app.actions.registry import (
    ensure_stage_at_least,
    registration_link,
    serialize_candidate,
    serialize_drive,
    sync_registration_status,
    update_counts,
)
from app.actions.statuses import ACTIVE_SESSION_STATUSES, NOT_QUALIFIED, QUALIFIED, statuses_for_filter
from app.actions.test_sessions import issue_session, session_link
from app.models import CandidateNotification, DriveCandidate
from app.reports.export import EXPORT_FORMATS, render_candidates
from app.services.notifier import NotificationError, get_notifier
from app.utils.datetime import parse_datetime_maybe, to_iso_utc, utc_now
from app.utils.errors import ApiError, conflict
from app.utils.validators import parse_optional_int

log = logging.getLogger(__name__)

KIND_REGISTRATION = "registration_invite"
KIND_TECHNICAL = "technical_test"
KIND_INTERVIEW = "interview_invite"

FINAL_DECISIONS = {"selected", "rejected"}


# --- filtering ------------------------------------------------------------


def _score_conditions(column, lo: Optional[int], hi: Optional[int]) -> list:
    lo = 0 if lo is None else lo
    hi = 100 if hi is None else hi
    if (lo, hi) == (0, 100):
        return []
    # A narrowed range only matches candidates that actually have the score.
    return [column.is_not(None), column >= lo, column <= hi]


def filter_candidates(db, drive_id: str, filters: dict[str, Any] | None = None) -> list[DriveCandidate]:
    """Read-only; inclusive bounds; missing or "all" means unconstrained."""
    f = filters or {}
    drive = get_drive(db, drive_id)
    stmt = select(DriveCandidate).where(DriveCandidate.driveSessionId == drive.driveSessionId)

    stmt = stmt.where(
        *_score_conditions(
            DriveCandidate.aptitudeScore,
            parse_optional_int(f.get("minAptitude"), "minAptitude", lo=0, hi=100),
            parse_optional_int(f.get("maxAptitude"), "maxAptitude", lo=0, hi=100),
        ),
        *_score_conditions(
            DriveCandidate.technicalScore,
            parse_optional_int(f.get("minTechnical"), "minTechnical", lo=0, hi=100),
            parse_optional_int(f.get("maxTechnical"), "maxTechnical", lo=0, hi=100),
        ),
    )

    current_round = parse_optional_int(f.get("currentRound"), "currentRound", lo=1, hi=3)
    if current_round is not None:
        stmt = stmt.where(DriveCandidate.currentRound == current_round)

    status = str(f.get("status") or "").strip().lower()
    if status and status != "all":
        if status in {QUALIFIED, NOT_QUALIFIED}:
            stmt = stmt.where(DriveCandidate.qualificationStatus == status)
        else:
            canonical = statuses_for_filter(status, currentRound=current_round or 1)
            if not canonical:
                raise ApiError("BAD_REQUEST", f"Unknown status filter: {status}")
            stmt = stmt.where(DriveCandidate.registrationStatus.in_([s.value for s in canonical]))

    stmt = stmt.order_by(DriveCandidate.name, DriveCandidate.driveCandidateId)
    return list(db.execute(stmt).scalars())


# --- notifications --------------------------------------------------------


@dataclass
class _Message:
    candidate_id: str
    drive_id: str
    kind: str
    to: str
    subject: str
    body: str
    meta: dict[str, Any] = field(default_factory=dict)


def _notified_ids(db, kind: str, drive_id: str) -> set[str]:
    return set(
        db.execute(
            select(CandidateNotification.driveCandidateId).where(
                CandidateNotification.driveSessionId == drive_id,
                CandidateNotification.kind == kind,
                CandidateNotification.deliveredAt != "",
            )
        ).scalars()
    )


def _deliver(db, cfg, messages: list[_Message], *, now: datetime) -> dict[str, Any]:
    """
    Sends in parallel; DB bookkeeping stays on the calling thread. A candidate is
    marked notified only after its own delivery succeeded.
    """

    if not messages:
        return {"sent": 0, "failed": []}

    notifier = get_notifier(cfg)
    errors: dict[str, str] = {}
    workers = max(1, min(int(cfg.NOTIFY_MAX_WORKERS), len(messages)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") as pool:
        futures = {
            pool.submit(notifier.send, kind=m.kind, to=m.to, subject=m.subject, body=m.body, meta=m.meta): m
            for m in messages
        }
        for fut in as_completed(futures):
            m = futures[fut]
            try:
                fut.result()
            except NotificationError as e:
                errors[m.candidate_id] = str(e)[:500]
            except Exception as e:
                # A broken notifier is still only a failed delivery for this candidate.
                log.exception("notifier crashed kind=%s candidate=%s", m.kind, m.candidate_id)
                errors[m.candidate_id] = f"{type(e).__name__}: {e}"[:500]

    now_iso = to_iso_utc(now)
    failed = []
    for m in messages:
        row = db.execute(
            select(CandidateNotification).where(
                CandidateNotification.driveCandidateId == m.candidate_id,
                CandidateNotification.kind == m.kind,
            )
        ).scalar_one_or_none()
        if row is None:
            row = CandidateNotification(
                driveCandidateId=m.candidate_id,
                driveSessionId=m.drive_id,
                kind=m.kind,
                deliveredAt="",
                attempts=0,
                lastError="",
            )
            db.add(row)
        row.attempts = int(row.attempts or 0) + 1
        row.updatedAt = now_iso
        err = errors.get(m.candidate_id)
        if err is None:
            row.deliveredAt = now_iso
            row.lastError = ""
        else:
            row.lastError = err
            failed.append({"id": m.candidate_id, "error": err})
            log.warning("notification kind=%s candidate=%s failed: %s", m.kind, m.candidate_id, err)

    db.flush()
    return {"sent": len(messages) - len(failed), "failed": failed}


# --- bulk actions ---------------------------------------------------------


def bulk_schedule_interviews(
    db,
    cfg,
    drive_id: str,
    candidate_ids: list[str],
    *,
    scheduled_at: str = "",
    actor: Actor | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Schedules only round-3 qualified candidates. Each candidate runs in its own
    savepoint, so one failure never undoes another candidate's scheduling.
    """

    now = now or utc_now()
    drive = get_drive(db, drive_id)
    when_dt = parse_datetime_maybe(scheduled_at) if scheduled_at else now
    if when_dt is None:
        raise ApiError("BAD_REQUEST", "scheduledAt must be an ISO-8601 datetime")
    when = to_iso_utc(when_dt)

    scheduled: list[DriveCandidate] = []
    skipped: list[dict[str, str]] = []
    seen: set[str] = set()
    for raw_id in candidate_ids:
        cid = str(raw_id or "").strip()
        if not cid or cid in seen:
            continue
        seen.add(cid)
        try:
            with db.begin_nested():
                cand = db.execute(
                    select(DriveCandidate).where(
                        DriveCandidate.driveCandidateId == cid,
                        DriveCandidate.driveSessionId == drive.driveSessionId,
                    )
                ).scalar_one_or_none()
                if cand is None:
                    skipped.append({"id": cid, "reason": "not found"})
                    continue
                if cand.interviewScheduled:
                    skipped.append({"id": cid, "reason": "already scheduled"})
                    continue
                if not (cand.currentRound == 3 and cand.qualificationStatus == QUALIFIED):
                    skipped.append({"id": cid, "reason": "not eligible"})
                    continue

                from_status = cand.registrationStatus
                cand.interviewScheduled = True
                cand.interviewScheduledAt = when
                cand.updatedAt = to_iso_utc(now)
                sync_registration_status(db, cand)
                append_audit(
                    db,
                    entityType="DRIVE_CANDIDATE",
                    entityId=cid,
                    action="INTERVIEW_SCHEDULE",
                    fromState=from_status,
                    toState=cand.registrationStatus,
                    stageTag="ROUND_3",
                    actor=actor,
                    at=to_iso_utc(now),
                    meta={"scheduledAt": when},
                )
            scheduled.append(cand)
        except SQLAlchemyError:
            log.exception("interview scheduling failed drive=%s candidate=%s", drive.driveSessionId, cid)
            skipped.append({"id": cid, "reason": "error"})

    if scheduled:
        ensure_stage_at_least(db, drive, "interview", actor=actor, now=now)
    update_counts(db, drive.driveSessionId, now=now)

    # Best-effort; delivery never gates the scheduling above.
    messages = [
        _Message(
            candidate_id=c.driveCandidateId,
            drive_id=drive.driveSessionId,
            kind=KIND_INTERVIEW,
            to=c.email,
            subject=f"Interview scheduled: {drive.name}",
            body=f"Hi {c.name}, your interview for {drive.name} is scheduled at {when}.",
            meta={"driveSessionId": drive.driveSessionId, "scheduledAt": when},
        )
        for c in scheduled
    ]
    delivery = _deliver(db, cfg, messages, now=now)

    log.info("drive=%s bulk schedule scheduled=%s skipped=%s", drive.driveSessionId, len(scheduled), len(skipped))
    return {
        "scheduled": len(scheduled),
        "scheduledIds": [c.driveCandidateId for c in scheduled],
        "skipped": skipped,
        "notified": delivery["sent"],
        "notifyFailed": delivery["failed"],
    }


def send_next_round_emails(db, cfg, drive_id: str, *, actor: Actor | None = None, now: Optional[datetime] = None) -> dict[str, Any]:
    """Issues (or reuses) the technical test for aptitude-qualified candidates and mails the link."""
    now = now or utc_now()
    drive = get_drive(db, drive_id)
    candidates = list(
        db.execute(
            select(DriveCandidate)
            .where(
                DriveCandidate.driveSessionId == drive.driveSessionId,
                DriveCandidate.currentRound == 2,
                DriveCandidate.qualificationStatus == QUALIFIED,
                DriveCandidate.technicalScore.is_(None),
            )
            .order_by(DriveCandidate.driveCandidateId)
        ).scalars()
    )
    notified = _notified_ids(db, KIND_TECHNICAL, drive.driveSessionId)

    messages: list[_Message] = []
    failed: list[dict[str, str]] = []
    for cand in candidates:
        if cand.driveCandidateId in notified:
            continue
        try:
            with db.begin_nested():
                ts = issue_session(db, cfg, candidate_id=cand.driveCandidateId, round_no=2, actor=actor, now=now)
        except ApiError as e:
            failed.append({"id": cand.driveCandidateId, "error": e.message})
            continue
        if ts.status not in ACTIVE_SESSION_STATUSES:
            # An overdue technical test was auto-submitted on this pass; no link to send.
            continue
        link = session_link(cfg, ts.testToken)
        messages.append(
            _Message(
                candidate_id=cand.driveCandidateId,
                drive_id=drive.driveSessionId,
                kind=KIND_TECHNICAL,
                to=cand.email,
                subject=f"Technical round: {drive.name}",
                body=(
                    f"Hi {cand.name}, you cleared the aptitude round of {drive.name} "
                    f"with {cand.aptitudeScore}%. Take the technical test here: {link}"
                ),
                meta={"driveSessionId": drive.driveSessionId, "testLink": link, "linkExpiresAt": ts.linkExpiresAt},
            )
        )

    delivery = _deliver(db, cfg, messages, now=now)
    append_audit(
        db,
        entityType="DRIVE",
        entityId=drive.driveSessionId,
        action="SEND_NEXT_ROUND",
        stageTag="ROUND_2",
        remark=f"sent={delivery['sent']} failed={len(delivery['failed']) + len(failed)}",
        actor=actor,
        at=to_iso_utc(now),
    )
    return {
        "eligible": len(candidates),
        "alreadyNotified": len([c for c in candidates if c.driveCandidateId in notified]),
        "sent": delivery["sent"],
        "failed": failed + delivery["failed"],
    }


def send_screening_emails(
    db, cfg, drive_id: str, candidate_ids: list[str] | None = None, *, actor: Actor | None = None, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Registration invites for roster entries that have not registered yet."""
    now = now or utc_now()
    drive = get_drive(db, drive_id)
    if drive.status in {"draft", "completed"}:
        raise conflict("Drive is not accepting registrations", reason="DRIVE_CLOSED")

    stmt = select(DriveCandidate).where(
        DriveCandidate.driveSessionId == drive.driveSessionId,
        DriveCandidate.registeredAt == "",
    )
    if candidate_ids:
        stmt = stmt.where(DriveCandidate.driveCandidateId.in_([str(c) for c in candidate_ids]))
    candidates = list(db.execute(stmt.order_by(DriveCandidate.driveCandidateId)).scalars())
    notified = _notified_ids(db, KIND_REGISTRATION, drive.driveSessionId)

    messages = []
    for cand in candidates:
        if cand.driveCandidateId in notified:
            continue
        link = registration_link(cfg, cand.registrationToken)
        messages.append(
            _Message(
                candidate_id=cand.driveCandidateId,
                drive_id=drive.driveSessionId,
                kind=KIND_REGISTRATION,
                to=cand.email,
                subject=f"Register for {drive.name}",
                body=f"Hi {cand.name}, confirm your spot in {drive.name} here: {link}",
                meta={"driveSessionId": drive.driveSessionId, "registrationLink": link},
            )
        )

    delivery = _deliver(db, cfg, messages, now=now)
    append_audit(
        db,
        entityType="DRIVE",
        entityId=drive.driveSessionId,
        action="SEND_SCREENING",
        stageTag="REGISTRATION",
        remark=f"sent={delivery['sent']} failed={len(delivery['failed'])}",
        actor=actor,
        at=to_iso_utc(now),
    )
    return {
        "eligible": len(candidates),
        "alreadyNotified": len(candidates) - len(messages),
        "sent": delivery["sent"],
        "failed": delivery["failed"],
    }


def record_final_decision(
    db, cfg, candidate_id: str, decision: str, *, drive_id: str = "", actor: Actor | None = None, now: Optional[datetime] = None
) -> DriveCandidate:
    now = now or utc_now()
    decision = str(decision or "").strip().lower()
    if decision not in FINAL_DECISIONS:
        raise ApiError("BAD_REQUEST", "decision must be selected|rejected")

    cand = get_candidate(db, candidate_id, drive_id=drive_id)
    if not cand.interviewScheduled:
        raise conflict("Interview has not been scheduled", reason="NOT_INTERVIEWED")
    if cand.finalDecision == decision:
        return cand

    from_status = cand.registrationStatus
    cand.finalDecision = decision
    cand.updatedAt = to_iso_utc(now)
    sync_registration_status(db, cand)
    append_audit(
        db,
        entityType="DRIVE_CANDIDATE",
        entityId=cand.driveCandidateId,
        action="FINAL_DECISION",
        fromState=from_status,
        toState=cand.registrationStatus,
        stageTag="ROUND_3",
        actor=actor,
        at=to_iso_utc(now),
    )
    update_counts(db, cand.driveSessionId, now=now)
    return cand


def export_candidates(db, cfg, drive_id: str, fmt: str, filters: dict[str, Any] | None = None) -> tuple[bytes, str, str]:
    fmt = str(fmt or "csv").strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise ApiError("BAD_REQUEST", "format must be csv|xlsx|json")
    drive = get_drive(db, drive_id)
    items = [serialize_candidate(c) for c in filter_candidates(db, drive_id, filters)]
    content = render_candidates(
        fmt, drive=serialize_drive(drive), items=items, timezone_display=cfg.TIMEZONE_DISPLAY
    )
    filename = f"drive_{drive.driveSessionId}_candidates.{fmt}"
    return content, EXPORT_FORMATS[fmt], filename


# --- action handlers -------------------------------------------------------


def candidates_filter(data, auth: Actor | None, db, cfg):
    items = filter_candidates(db, require_str(data, "driveSessionId"), data)
    return {"total": len(items), "items": [serialize_candidate(c) for c in items]}


def interviews_bulk_schedule(data, auth: Actor | None, db, cfg):
    ids = (data or {}).get("candidateIds")
    if not isinstance(ids, list) or not ids:
        raise ApiError("BAD_REQUEST", "candidateIds must be a non-empty list")
    return bulk_schedule_interviews(
        db,
        cfg,
        require_str(data, "driveSessionId"),
        ids,
        scheduled_at=str((data or {}).get("scheduledAt") or "").strip(),
        actor=auth,
    )


def next_round_send(data, auth: Actor | None, db, cfg):
    return send_next_round_emails(db, cfg, require_str(data, "driveSessionId"), actor=auth)


def screening_send(data, auth: Actor | None, db, cfg):
    ids = (data or {}).get("candidateIds")
    if ids is not None and not isinstance(ids, list):
        raise ApiError("BAD_REQUEST", "candidateIds must be a list")
    return send_screening_emails(db, cfg, require_str(data, "driveSessionId"), ids or None, actor=auth)


def final_decision_set(data, auth: Actor | None, db, cfg):
    cand = record_final_decision(
        db,
        cfg,
        require_str(data, "driveCandidateId"),
        require_str(data, "decision"),
        drive_id=str((data or {}).get("driveSessionId") or "").strip(),
        actor=auth,
    )
    return serialize_candidate(cand)


def candidates_export(data, auth: Actor | None, db, cfg):
    content, mimetype, filename = export_candidates(
        db, cfg, require_str(data, "driveSessionId"), str((data or {}).get("format") or "csv"), data
    )
    return {"content": content, "mimetype": mimetype, "filename": filename}
