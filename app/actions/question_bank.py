from __future__ import annotations

import json
import logging
import random
from typing import Any, Optional

from sqlalchemy import or_, select

from app.actions.helpers import Actor, append_audit, new_id, parse_json, require_str
from app.models import AptitudeQuestion
from app.utils.datetime import iso_utc_now
from app.utils.errors import ApiError, conflict, not_found
from app.utils.validators import parse_int

log = logging.getLogger(__name__)

DIFFICULTIES = {"easy", "medium", "hard"}
OPTION_COUNT = 4

_rng = random.SystemRandom()


def _question_pool(db, *, round_no: int, drive_id: str, job_id: str) -> list[AptitudeQuestion]:
    stmt = select(AptitudeQuestion).where(
        AptitudeQuestion.testRound == round_no,
        or_(AptitudeQuestion.driveSessionId == "", AptitudeQuestion.driveSessionId == drive_id),
    )
    if job_id:
        stmt = stmt.where(or_(AptitudeQuestion.jobId == "", AptitudeQuestion.jobId == job_id))
    else:
        stmt = stmt.where(AptitudeQuestion.jobId == "")
    return list(db.execute(stmt.order_by(AptitudeQuestion.questionId)).scalars())


def sample_questions(
    db, *, round_no: int, drive_id: str = "", job_id: str = "", count: int, rng: Optional[random.Random] = None
) -> list[dict[str, Any]]:
    """
    Draws `min(count, available)` distinct questions and returns a snapshot
    (text, options, correct index) that later bank edits cannot change.
    """

    db.flush()
    pool = _question_pool(db, round_no=round_no, drive_id=drive_id, job_id=job_id)
    if not pool:
        raise conflict(f"No questions available for round {round_no}", reason="NO_QUESTIONS")

    n = min(int(count), len(pool))
    if n < count:
        log.warning(
            "question pool short drive=%s round=%s configured=%s available=%s", drive_id, round_no, count, len(pool)
        )
    picked = (rng or _rng).sample(pool, n)
    return [
        {
            "questionId": q.questionId,
            "question": q.question,
            "options": parse_json(q.optionsJson, []),
            "correctAnswer": int(q.correctAnswer),
            "category": q.category,
            "difficulty": q.difficulty,
        }
        for q in picked
    ]


def _parse_question(data: dict[str, Any], *, base: Optional[AptitudeQuestion] = None) -> dict[str, Any]:
    def _get(key: str, default: Any) -> Any:
        if key in (data or {}):
            return data[key]
        return default

    question = str(_get("question", base.question if base else "") or "").strip()
    if not question:
        raise ApiError("BAD_REQUEST", "Missing question")

    options = _get("options", parse_json(base.optionsJson, []) if base else None)
    if not isinstance(options, list) or len(options) != OPTION_COUNT:
        raise ApiError("BAD_REQUEST", f"options must be a list of {OPTION_COUNT} strings")
    options = [str(o or "").strip() for o in options]
    if any(not o for o in options):
        raise ApiError("BAD_REQUEST", "options must not be empty")

    correct = parse_int(_get("correctAnswer", base.correctAnswer if base else None), "correctAnswer", lo=0, hi=OPTION_COUNT - 1)
    test_round = parse_int(_get("testRound", base.testRound if base else 1), "testRound", lo=1, hi=2)

    difficulty = str(_get("difficulty", base.difficulty if base else "medium") or "medium").strip().lower()
    if difficulty not in DIFFICULTIES:
        raise ApiError("BAD_REQUEST", "difficulty must be easy|medium|hard")

    tags = _get("tags", parse_json(base.tagsJson, []) if base else [])
    if not isinstance(tags, list):
        raise ApiError("BAD_REQUEST", "tags must be a list")

    return {
        "question": question,
        "optionsJson": json.dumps(options),
        "correctAnswer": correct,
        "testRound": test_round,
        "difficulty": difficulty,
        "category": str(_get("category", base.category if base else "") or "").strip(),
        "tagsJson": json.dumps([str(t).strip() for t in tags if str(t).strip()]),
        "driveSessionId": str(_get("driveSessionId", base.driveSessionId if base else "") or "").strip(),
        "jobId": str(_get("jobId", base.jobId if base else "") or "").strip(),
    }


def serialize_question(q: AptitudeQuestion) -> dict[str, Any]:
    return {
        "questionId": q.questionId,
        "question": q.question,
        "options": parse_json(q.optionsJson, []),
        "correctAnswer": q.correctAnswer,
        "difficulty": q.difficulty,
        "category": q.category,
        "testRound": q.testRound,
        "tags": parse_json(q.tagsJson, []),
        "driveSessionId": q.driveSessionId,
        "jobId": q.jobId,
        "createdAt": q.createdAt,
        "updatedAt": q.updatedAt,
    }


def _get_question(db, question_id: str) -> AptitudeQuestion:
    q = db.execute(select(AptitudeQuestion).where(AptitudeQuestion.questionId == question_id)).scalar_one_or_none()
    if not q:
        raise not_found("Question", question_id)
    return q


def create_question(db, data: dict[str, Any], *, actor: Actor | None) -> AptitudeQuestion:
    fields = _parse_question(data)
    now = iso_utc_now()
    q = AptitudeQuestion(
        questionId=new_id("Q"),
        createdAt=now,
        createdBy=actor.userId if actor else "",
        updatedAt=now,
        **fields,
    )
    db.add(q)
    return q


def question_list(data, auth: Actor | None, db, cfg):
    stmt = select(AptitudeQuestion).order_by(AptitudeQuestion.createdAt, AptitudeQuestion.questionId)
    drive_id = str((data or {}).get("driveSessionId") or "").strip()
    if drive_id:
        stmt = stmt.where(or_(AptitudeQuestion.driveSessionId == "", AptitudeQuestion.driveSessionId == drive_id))
    test_round = (data or {}).get("testRound")
    if test_round not in (None, ""):
        stmt = stmt.where(AptitudeQuestion.testRound == parse_int(test_round, "testRound", lo=1, hi=2))
    category = str((data or {}).get("category") or "").strip()
    if category:
        stmt = stmt.where(AptitudeQuestion.category == category)
    return {"items": [serialize_question(q) for q in db.execute(stmt).scalars()]}


def question_create(data, auth: Actor | None, db, cfg):
    q = create_question(db, data or {}, actor=auth)
    append_audit(db, entityType="QUESTION", entityId=q.questionId, action="QUESTION_CREATE", stageTag="QUESTION_BANK", actor=auth)
    return serialize_question(q)


def question_bulk_create(data, auth: Actor | None, db, cfg):
    items = (data or {}).get("items")
    if not isinstance(items, list) or not items:
        raise ApiError("BAD_REQUEST", "items must be a non-empty list")

    created: list[AptitudeQuestion] = []
    errors: list[dict[str, Any]] = []
    for idx, item in enumerate(items):
        try:
            created.append(create_question(db, item if isinstance(item, dict) else {}, actor=auth))
        except ApiError as e:
            errors.append({"index": idx, "error": e.message})
    append_audit(
        db,
        entityType="QUESTION",
        entityId="BULK",
        action="QUESTION_BULK_CREATE",
        stageTag="QUESTION_BANK",
        remark=f"created={len(created)} failed={len(errors)}",
        actor=auth,
    )
    return {"created": len(created), "questionIds": [q.questionId for q in created], "errors": errors}


def question_update(data, auth: Actor | None, db, cfg):
    q = _get_question(db, require_str(data, "questionId"))
    for key, value in _parse_question(data or {}, base=q).items():
        setattr(q, key, value)
    q.updatedAt = iso_utc_now()
    append_audit(db, entityType="QUESTION", entityId=q.questionId, action="QUESTION_UPDATE", stageTag="QUESTION_BANK", actor=auth)
    return serialize_question(q)


def question_delete(data, auth: Actor | None, db, cfg):
    q = _get_question(db, require_str(data, "questionId"))
    db.delete(q)
    append_audit(db, entityType="QUESTION", entityId=q.questionId, action="QUESTION_DELETE", stageTag="QUESTION_BANK", actor=auth)
    return {"deleted": True, "questionId": q.questionId}
