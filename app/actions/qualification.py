"""
Cutoff evaluation for drive rounds.

`evaluate` scores one finished round; `recalculate_cutoffs` re-runs the same
comparison for a whole drive after an administrator edits the cutoffs.

Retroactive changes follow one policy: a candidate's latest scored round is
recomputed unless the candidate has already acted on the stage after it (opened
the next round's test, or had an interview scheduled / decided). Those
candidates are frozen and reported instead of silently flipped.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update

from app.actions.helpers import Actor, append_audit, get_candidate, get_drive, require_str
from app.actions.registry import serialize_candidate, sync_registration_status, update_counts
from app.actions.statuses import (
    NOT_QUALIFIED,
    QUALIFIED,
    SESSION_COMPLETED,
    SESSION_EXPIRED,
    SESSION_IN_PROGRESS,
    SESSION_PENDING,
)
from app.models import DriveCandidate, DriveSession, TestSession
from app.utils.datetime import to_iso_utc, utc_now
from app.utils.errors import ApiError, conflict
from app.utils.validators import parse_int

log = logging.getLogger(__name__)


def cutoff_for_round(drive: DriveSession, round_no: int) -> int:
    if round_no == 1:
        return int(drive.aptitudeCutoff)
    if round_no == 2:
        return int(drive.technicalCutoff)
    raise ApiError("BAD_REQUEST", f"Round {round_no} has no cutoff")


def is_qualified(score: int, cutoff: int) -> bool:
    # A score equal to the cutoff qualifies.
    return int(score) >= int(cutoff)


def evaluate(
    db,
    cfg,
    cand: DriveCandidate,
    *,
    round_no: int,
    score: int,
    actor: Actor | None = None,
    now: Optional[datetime] = None,
) -> bool:
    """Stores the round score and its qualification; never issues the next round."""
    now = now or utc_now()
    drive = get_drive(db, cand.driveSessionId)
    cutoff = cutoff_for_round(drive, round_no)
    qualified = is_qualified(score, cutoff)

    if round_no == 1:
        cand.aptitudeScore = int(score)
    else:
        cand.technicalScore = int(score)
    from_status = cand.registrationStatus
    cand.qualificationStatus = QUALIFIED if qualified else NOT_QUALIFIED
    if qualified:
        cand.currentRound = max(int(cand.currentRound or 1), min(round_no + 1, 3))
    cand.updatedAt = to_iso_utc(now)
    sync_registration_status(db, cand)

    append_audit(
        db,
        entityType="DRIVE_CANDIDATE",
        entityId=cand.driveCandidateId,
        action="ROUND_EVALUATE",
        fromState=from_status,
        toState=cand.registrationStatus,
        stageTag=f"ROUND_{round_no}",
        remark=f"score={score} cutoff={cutoff}",
        actor=actor,
        at=to_iso_utc(now),
    )
    return qualified


def _latest_scored_round(cand: DriveCandidate) -> Optional[tuple[int, int]]:
    if cand.technicalScore is not None:
        return 2, int(cand.technicalScore)
    if cand.aptitudeScore is not None:
        return 1, int(cand.aptitudeScore)
    return None


def _acted_on_next_stage(db, cand: DriveCandidate, round_no: int) -> bool:
    if cand.interviewScheduled or cand.finalDecision:
        return True
    if round_no == 1:
        opened = db.execute(
            select(TestSession.testSessionId).where(
                TestSession.driveCandidateId == cand.driveCandidateId,
                TestSession.testRound == 2,
                TestSession.status.in_((SESSION_IN_PROGRESS, SESSION_COMPLETED)),
            )
        ).first()
        return opened is not None
    return False


def _requalify(db, cand: DriveCandidate, drive: DriveSession, *, actor: Actor | None, now: datetime) -> str:
    """Returns "flipped", "frozen" or "" (unchanged)."""
    latest = _latest_scored_round(cand)
    if latest is None:
        return ""
    round_no, score = latest
    cutoff = cutoff_for_round(drive, round_no)
    qualified = is_qualified(score, cutoff)
    was_qualified = cand.qualificationStatus == QUALIFIED
    if qualified == was_qualified:
        return ""
    if _acted_on_next_stage(db, cand, round_no):
        return "frozen"

    from_status = cand.registrationStatus
    from_round = cand.currentRound
    now_iso = to_iso_utc(now)
    cand.qualificationStatus = QUALIFIED if qualified else NOT_QUALIFIED
    if qualified:
        cand.currentRound = max(int(cand.currentRound or 1), round_no + 1)
    else:
        # Administrative demotion back to the re-scored round.
        cand.currentRound = round_no
        if round_no == 1:
            db.execute(
                update(TestSession)
                .where(
                    TestSession.driveCandidateId == cand.driveCandidateId,
                    TestSession.testRound == 2,
                    TestSession.status == SESSION_PENDING,
                )
                .values(status=SESSION_EXPIRED, completionReason="requalified", updatedAt=now_iso)
                .execution_options(synchronize_session=False)
            )
    cand.updatedAt = now_iso
    sync_registration_status(db, cand)

    append_audit(
        db,
        entityType="DRIVE_CANDIDATE",
        entityId=cand.driveCandidateId,
        action="REQUALIFY",
        fromState=from_status,
        toState=cand.registrationStatus,
        stageTag=f"ROUND_{round_no}",
        remark=f"score={score} cutoff={cutoff}",
        actor=actor,
        at=now_iso,
        meta={"fromRound": from_round, "toRound": cand.currentRound},
    )
    return "flipped"


def recalculate_cutoffs(
    db,
    cfg,
    drive_id: str,
    *,
    aptitude_cutoff: Optional[int] = None,
    technical_cutoff: Optional[int] = None,
    actor: Actor | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Updates the drive cutoffs and requalifies every candidate in one savepoint.

    Candidates are walked in primary-key batches of REQUALIFY_BATCH_SIZE. Re-running
    with unchanged cutoffs flips nobody.
    """

    now = now or utc_now()
    drive = get_drive(db, drive_id, for_update=True)
    previous = {"aptitudeCutoff": drive.aptitudeCutoff, "technicalCutoff": drive.technicalCutoff}

    flipped = 0
    frozen: list[str] = []
    batch_size = int(cfg.REQUALIFY_BATCH_SIZE)

    with db.begin_nested():
        if aptitude_cutoff is not None:
            drive.aptitudeCutoff = int(aptitude_cutoff)
        if technical_cutoff is not None:
            drive.technicalCutoff = int(technical_cutoff)
        drive.updatedAt = to_iso_utc(now)
        drive.updatedBy = actor.userId if actor else ""

        last_id = ""
        while True:
            batch = list(
                db.execute(
                    select(DriveCandidate)
                    .where(DriveCandidate.driveSessionId == drive.driveSessionId, DriveCandidate.driveCandidateId > last_id)
                    .order_by(DriveCandidate.driveCandidateId)
                    .limit(batch_size)
                ).scalars()
            )
            if not batch:
                break
            for cand in batch:
                outcome = _requalify(db, cand, drive, actor=actor, now=now)
                if outcome == "flipped":
                    flipped += 1
                elif outcome == "frozen":
                    frozen.append(cand.driveCandidateId)
            last_id = batch[-1].driveCandidateId
            db.flush()

        append_audit(
            db,
            entityType="DRIVE",
            entityId=drive.driveSessionId,
            action="CUTOFFS_UPDATE",
            stageTag="CUTOFFS",
            remark=f"requalified={flipped} frozen={len(frozen)}",
            actor=actor,
            at=to_iso_utc(now),
            meta={
                "from": previous,
                "to": {"aptitudeCutoff": drive.aptitudeCutoff, "technicalCutoff": drive.technicalCutoff},
            },
        )
        update_counts(db, drive.driveSessionId, now=now)

    log.info(
        "drive=%s cutoffs %s -> apt=%s tech=%s requalified=%s frozen=%s",
        drive.driveSessionId,
        previous,
        drive.aptitudeCutoff,
        drive.technicalCutoff,
        flipped,
        len(frozen),
    )
    return {
        "requalifiedCandidates": flipped,
        "frozen": len(frozen),
        "frozenCandidateIds": frozen,
        "aptitudeCutoff": drive.aptitudeCutoff,
        "technicalCutoff": drive.technicalCutoff,
    }


def override_round(
    db,
    cfg,
    candidate_id: str,
    current_round: int,
    *,
    drive_id: str = "",
    reason: str = "",
    actor: Actor | None = None,
    now: Optional[datetime] = None,
) -> DriveCandidate:
    """
    Administrative move of a candidate to any round, backwards included.

    Scores are kept; unopened test links for later rounds are withdrawn. Candidates
    with an interview scheduled or a final decision cannot be moved below round 3.
    """

    now = now or utc_now()
    target = parse_int(current_round, "currentRound", lo=1, hi=3)
    cand = get_candidate(db, candidate_id, drive_id=drive_id)
    if target == cand.currentRound:
        return cand
    if target < 3 and (cand.interviewScheduled or cand.finalDecision):
        raise conflict("Candidate is already in the interview round", reason="INTERVIEW_STAGE")

    from_round = cand.currentRound
    from_status = cand.registrationStatus
    now_iso = to_iso_utc(now)
    cand.currentRound = target
    cand.updatedAt = now_iso
    if target < 2:
        db.execute(
            update(TestSession)
            .where(
                TestSession.driveCandidateId == cand.driveCandidateId,
                TestSession.testRound == 2,
                TestSession.status == SESSION_PENDING,
            )
            .values(status=SESSION_EXPIRED, completionReason="override", updatedAt=now_iso)
            .execution_options(synchronize_session=False)
        )
    sync_registration_status(db, cand)

    append_audit(
        db,
        entityType="DRIVE_CANDIDATE",
        entityId=cand.driveCandidateId,
        action="CANDIDATE_ROUND_OVERRIDE",
        fromState=from_status,
        toState=cand.registrationStatus,
        stageTag=f"ROUND_{target}",
        remark=str(reason or "").strip()[:500],
        actor=actor,
        at=now_iso,
        meta={"fromRound": from_round, "toRound": target},
    )
    update_counts(db, cand.driveSessionId, now=now)
    log.info("candidate=%s round override %s -> %s", cand.driveCandidateId, from_round, target)
    return cand


def round_override(data, auth: Actor | None, db, cfg):
    if (data or {}).get("currentRound") in (None, ""):
        raise ApiError("BAD_REQUEST", "currentRound is required")
    return serialize_candidate(
        override_round(
            db,
            cfg,
            require_str(data, "driveCandidateId"),
            data["currentRound"],
            drive_id=str((data or {}).get("driveSessionId") or "").strip(),
            reason=str((data or {}).get("reason") or ""),
            actor=auth,
        )
    )


def _cutoff_arg(data: Any, key: str) -> Optional[int]:
    raw = (data or {}).get(key)
    if raw is None or str(raw).strip() == "":
        return None
    return parse_int(raw, key, lo=0, hi=100)


def cutoffs_update(data, auth: Actor | None, db, cfg):
    aptitude = _cutoff_arg(data, "aptitudeCutoff")
    technical = _cutoff_arg(data, "technicalCutoff")
    if aptitude is None and technical is None:
        raise ApiError("BAD_REQUEST", "aptitudeCutoff or technicalCutoff is required")
    return recalculate_cutoffs(
        db,
        cfg,
        require_str(data, "driveSessionId"),
        aptitude_cutoff=aptitude,
        technical_cutoff=technical,
        actor=auth,
    )
