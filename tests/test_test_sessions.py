from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.actions import qualification, question_bank
from app.actions import test_sessions as sessions
from app.models import AuditLog, DriveCandidate, DriveSession, TestSession
from app.utils.errors import ApiError
from conftest import create_drive, make_question, seed_questions

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _first_candidate(db, drive_id: str) -> DriveCandidate:
    return db.execute(
        select(DriveCandidate).where(DriveCandidate.driveSessionId == drive_id).order_by(DriveCandidate.email)
    ).scalars().first()


def _issue(db, cfg, cand, *, round_no: int = 1, now: datetime = T0) -> TestSession:
    return sessions.issue_session(db, cfg, candidate_id=cand.driveCandidateId, round_no=round_no, actor=None, now=now)


@pytest.fixture()
def drive(db, cfg):
    # Every seeded question's correct option is 0.
    seed_questions(db, round_no=1, count=10, correct=0)
    seed_questions(db, round_no=2, count=10, correct=0)
    drive_id = create_drive(db, cfg, aptitudeCutoff=60, technicalCutoff=70, questionCount=10, testDuration=30)
    return db.get(DriveSession, drive_id)


@pytest.mark.parametrize(
    "correct,total,expected",
    [(0, 10, 0), (7, 10, 70), (1, 8, 13), (2, 3, 67), (1, 3, 33), (10, 10, 100), (0, 0, 0)],
)
def test_score_percent_rounds_half_up(correct, total, expected):
    assert sessions.score_percent(correct, total) == expected


def test_issue_is_idempotent_per_round(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    first = _issue(db, cfg, cand)
    second = _issue(db, cfg, cand)

    assert first.testSessionId == second.testSessionId
    assert first.status == "pending"
    assert first.totalQuestions == 10
    assert first.linkExpiresAt == "2026-03-03T09:00:00.000Z"
    assert drive.status == "aptitude"
    active = db.execute(
        select(TestSession).where(TestSession.driveCandidateId == cand.driveCandidateId)
    ).scalars().all()
    assert len(active) == 1


def test_round_two_requires_aptitude_qualification(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    with pytest.raises(ApiError) as exc:
        _issue(db, cfg, cand, round_no=2)
    assert exc.value.status == 409
    assert exc.value.details["reason"] == "NOT_ELIGIBLE"


def test_start_answer_submit_scores_and_qualifies(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)

    sessions.start_session(db, cfg, ts.testToken, now=T0)
    assert ts.status == "in_progress"
    assert ts.expiresAt == "2026-03-02T09:30:00.000Z"
    assert cand.registrationStatus == "aptitude_in_progress"

    for idx in range(6):
        out = sessions.record_answer(db, cfg, ts.testToken, idx, 0, now=T0 + timedelta(minutes=1))
        assert out["accepted"] is True
    # Last answer for a question wins.
    sessions.record_answer(db, cfg, ts.testToken, 5, 3, now=T0 + timedelta(minutes=2))

    result = sessions.submit_session(
        db, cfg, ts.testToken, [{"questionIndex": 8, "choice": 0}, {"questionIndex": 9, "choice": 0}],
        now=T0 + timedelta(minutes=10),
    )

    assert result["status"] == "completed"
    assert result["correctAnswers"] == 7
    assert result["score"] == 70
    assert result["passed"] is True
    assert result["timeSpent"] == 600
    assert result["completionReason"] == "submitted"
    assert cand.aptitudeScore == 70
    assert cand.qualificationStatus == "qualified"
    assert cand.currentRound == 2
    assert cand.registrationStatus == "aptitude_qualified"
    assert drive.testCompleted == 1
    assert drive.aptitudeQualified == 1


def test_score_equal_to_cutoff_qualifies(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    result = sessions.submit_session(db, cfg, ts.testToken, {str(i): 0 for i in range(6)}, now=T0)

    assert result["score"] == 60
    assert result["passed"] is True
    assert cand.qualificationStatus == "qualified"


def test_double_submit_collapses_to_first_result(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)

    first = sessions.submit_session(db, cfg, ts.testToken, {"0": 0}, now=T0 + timedelta(minutes=1))
    second = sessions.submit_session(
        db, cfg, ts.testToken, {str(i): 0 for i in range(10)}, now=T0 + timedelta(minutes=2)
    )

    assert first == second
    assert second["score"] == 10
    assert cand.qualificationStatus == "not_qualified"
    assert cand.currentRound == 1


def test_submit_before_start_is_rejected(db, cfg, drive):
    ts = _issue(db, cfg, _first_candidate(db, drive.driveSessionId))
    with pytest.raises(ApiError) as exc:
        sessions.submit_session(db, cfg, ts.testToken, {}, now=T0)
    assert exc.value.details["reason"] == "NOT_STARTED"


def test_answer_after_deadline_auto_submits(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    for idx in range(8):
        sessions.record_answer(db, cfg, ts.testToken, idx, 0, now=T0 + timedelta(minutes=5))

    late = sessions.record_answer(db, cfg, ts.testToken, 9, 0, now=T0 + timedelta(minutes=45))

    assert late["accepted"] is False
    assert late["reason"] == "TIME_UP"
    assert late["result"]["score"] == 80
    assert late["result"]["completionReason"] == "auto_expired"
    # Time is capped at the deadline, not the moment of the late request.
    assert late["result"]["timeSpent"] == 30 * 60
    assert ts.completedAt == "2026-03-02T09:30:00.000Z"
    assert cand.aptitudeScore == 80


def test_answer_validation(db, cfg, drive):
    ts = _issue(db, cfg, _first_candidate(db, drive.driveSessionId))
    with pytest.raises(ApiError) as exc:
        sessions.record_answer(db, cfg, ts.testToken, 0, 0, now=T0)
    assert exc.value.details["reason"] == "NOT_IN_PROGRESS"

    sessions.start_session(db, cfg, ts.testToken, now=T0)
    for q_index, choice in ((10, 0), (-1, 0), (0, 4), (0, True), ("x", 1)):
        with pytest.raises(ApiError) as exc:
            sessions.record_answer(db, cfg, ts.testToken, q_index, choice, now=T0)
        assert exc.value.code == "BAD_REQUEST"


def test_unopened_link_expires_and_can_be_reissued(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    later = T0 + timedelta(hours=25)

    out = sessions.expire_overdue_sessions(db, cfg, now=later)
    assert out == {"autoSubmitted": 0, "linksExpired": 1, "failed": 0}
    assert ts.status == "expired"
    assert ts.completionReason == "link_expired"

    with pytest.raises(ApiError) as exc:
        sessions.start_session(db, cfg, ts.testToken, now=later)
    assert exc.value.details["reason"] == "LINK_EXPIRED"

    fresh = _issue(db, cfg, cand, now=later)
    assert fresh.testSessionId != ts.testSessionId
    assert fresh.testToken != ts.testToken


def test_sweep_auto_submits_running_sessions(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    sessions.record_answer(db, cfg, ts.testToken, 0, 0, now=T0)

    assert sessions.expire_overdue_sessions(db, cfg, now=T0 + timedelta(minutes=29))["autoSubmitted"] == 0
    out = sessions.expire_overdue_sessions(db, cfg, now=T0 + timedelta(minutes=31))

    assert out["autoSubmitted"] == 1
    assert ts.status == "completed"
    assert ts.score == 10
    assert cand.registrationStatus == "aptitude_not_qualified"
    # A second sweep finds nothing left to do.
    assert sessions.expire_overdue_sessions(db, cfg, now=T0 + timedelta(minutes=32))["autoSubmitted"] == 0


def test_completed_round_cannot_be_reissued(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    sessions.submit_session(db, cfg, ts.testToken, {}, now=T0)

    with pytest.raises(ApiError) as exc:
        _issue(db, cfg, cand)
    assert exc.value.details["reason"] == "ROUND_COMPLETED"


def test_fetch_never_exposes_correct_answers(db, cfg, drive):
    ts = _issue(db, cfg, _first_candidate(db, drive.driveSessionId))

    pending = sessions.fetch_test(db, cfg, ts.testToken, now=T0)
    assert "questions" not in pending

    sessions.start_session(db, cfg, ts.testToken, now=T0)
    view = sessions.fetch_test(db, cfg, ts.testToken, now=T0 + timedelta(minutes=5))
    assert len(view["questions"]) == 10
    assert all(set(q) == {"index", "question", "options"} for q in view["questions"])
    assert view["timeRemainingSeconds"] == 25 * 60

    with pytest.raises(ApiError) as exc:
        sessions.fetch_test(db, cfg, "TST-missing", now=T0)
    assert exc.value.status == 404


def test_question_snapshot_survives_bank_edits(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    snapshot = ts.questionsJson

    question_bank.question_update(
        {"questionId": question_bank.sample_questions(db, round_no=1, count=1)[0]["questionId"], "correctAnswer": 3},
        None,
        db,
        cfg,
    )
    db.flush()
    db.refresh(ts)
    assert ts.questionsJson == snapshot


def test_short_pool_shortens_the_test(db, cfg):
    make_question(db, round_no=1, text="only one")
    make_question(db, round_no=1, text="only two")
    drive_id = create_drive(db, cfg, questionCount=50)
    ts = _issue(db, cfg, _first_candidate(db, drive_id))
    assert ts.totalQuestions == 2


def test_empty_pool_is_a_conflict(db, cfg):
    drive_id = create_drive(db, cfg)
    with pytest.raises(ApiError) as exc:
        _issue(db, cfg, _first_candidate(db, drive_id))
    assert exc.value.details["reason"] == "NO_QUESTIONS"


def test_sample_questions_are_distinct_and_scoped(db, cfg):
    seed_questions(db, round_no=1, count=5)
    make_question(db, round_no=1, text="other drive", drive_id="DRV-other")
    make_question(db, round_no=1, text="other job", job_id="JOB-other")

    picked = question_bank.sample_questions(db, round_no=1, drive_id="DRV-mine", count=20, rng=random.Random(7))
    texts = [q["question"] for q in picked]
    assert len(texts) == 5
    assert len(set(q["questionId"] for q in picked)) == 5
    assert "other drive" not in texts
    assert "other job" not in texts


def test_candidate_http_flow(app_client, db, cfg):
    _app, client = app_client
    seed_questions(db, round_no=1, count=10)
    drive_id = create_drive(db, cfg, questionCount=10)
    cand = _first_candidate(db, drive_id)
    token = sessions.issue_session(db, cfg, candidate_id=cand.driveCandidateId, round_no=1, actor=None).testToken
    db.commit()

    res = client.post(f"/api/v1/drive/test/{token}/start")
    assert res.status_code == 200
    assert len(res.get_json()["data"]["questions"]) == 10

    res = client.post(f"/api/v1/drive/test/{token}/answer", json={"questionIndex": 0, "choice": 0})
    assert res.get_json()["data"]["answeredQuestions"] == 1

    res = client.post(f"/api/v1/drive/test/{token}/submit", json={"answers": {"1": 0, "2": 0}})
    data = res.get_json()["data"]
    assert data["score"] == 30
    assert data["passed"] is False

    res = client.get(f"/api/v1/drive/test/{token}/status")
    status = res.get_json()["data"]
    assert status["status"] == "completed"
    assert status["result"]["score"] == 30

    res = client.get(f"/api/v1/drives/{drive_id}/candidates/{cand.driveCandidateId}/test-details")
    details = res.get_json()["data"]["sessions"][0]
    assert sum(1 for q in details["questions"] if q["isCorrect"]) == 3
    assert all(q["correctAnswer"] == 0 for q in details["questions"])


def test_expire_job_requires_internal_token(app_client):
    _app, client = app_client
    res = client.post("/api/v1/jobs/expire-sessions", json={})
    assert res.status_code == 403

    res = client.post("/api/v1/jobs/expire-sessions", json={}, headers={"X-Internal-Token": "test-cron-token"})
    assert res.status_code == 200
    assert res.get_json()["data"] == {"autoSubmitted": 0, "linksExpired": 0, "failed": 0}


def test_second_start_keeps_the_original_clock(db, cfg, drive):
    ts = _issue(db, cfg, _first_candidate(db, drive.driveSessionId))
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    started, expires = ts.startedAt, ts.expiresAt

    again = sessions.start_session(db, cfg, ts.testToken, now=T0 + timedelta(minutes=10))

    assert again.testSessionId == ts.testSessionId
    assert (again.status, again.startedAt, again.expiresAt) == ("in_progress", started, expires)
    assert expires == "2026-03-02T09:30:00.000Z"


def test_reissue_after_deadline_returns_the_auto_submitted_session(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    for idx in range(7):
        sessions.record_answer(db, cfg, ts.testToken, idx, 0, now=T0 + timedelta(minutes=5))

    again = _issue(db, cfg, cand, now=T0 + timedelta(minutes=45))

    assert again.testSessionId == ts.testSessionId
    assert (again.status, again.score, again.completionReason) == ("completed", 70, "auto_expired")
    assert cand.aptitudeScore == 70
    assert cand.currentRound == 2


def test_issue_over_http_settles_an_overdue_session(app_client, db, cfg):
    _app, client = app_client
    seed_questions(db, round_no=1, count=10)
    drive_id = create_drive(db, cfg, questionCount=10, testDuration=30)
    cand = _first_candidate(db, drive_id)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    session_id = ts.testSessionId
    db.commit()

    # The server clock is well past T0 + 30 minutes.
    res = client.post(f"/api/v1/drives/{drive_id}/candidates/{cand.driveCandidateId}/tests", json={"round": 1})
    assert res.status_code == 201
    assert res.get_json()["data"]["status"] == "completed"

    db.expire_all()
    stored = db.get(TestSession, session_id)
    assert (stored.status, stored.completionReason, stored.score) == ("completed", "auto_expired", 0)


def test_test_details_settle_overdue_sessions(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    sessions.record_answer(db, cfg, ts.testToken, 0, 0, now=T0 + timedelta(minutes=1))

    details = sessions.candidate_test_details(db, cfg, cand.driveCandidateId, now=T0 + timedelta(minutes=40))

    (row,) = details["sessions"]
    assert (row["status"], row["score"], row["completionReason"]) == ("completed", 10, "auto_expired")
    assert row["questions"][0]["isCorrect"] is True
    assert cand.aptitudeScore == 10


def test_link_expired_by_start_is_reported_not_rolled_back(db, cfg, drive):
    ts = _issue(db, cfg, _first_candidate(db, drive.driveSessionId))
    later = T0 + timedelta(hours=25)

    out = sessions.start_session(db, cfg, ts.testToken, now=later)
    assert (out.status, out.completionReason) == ("expired", "link_expired")

    db.flush()
    audits = db.execute(
        select(AuditLog).where(AuditLog.entityId == ts.testSessionId, AuditLog.action == "TEST_LINK_EXPIRE")
    ).scalars().all()
    assert len(audits) == 1

    # Once stored as expired, further access is a plain conflict with no new writes.
    with pytest.raises(ApiError) as exc:
        sessions.submit_session(db, cfg, ts.testToken, {}, now=later)
    assert exc.value.details["reason"] == "LINK_EXPIRED"


def test_passed_follows_stored_qualification_after_cutoff_change(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    sessions.start_session(db, cfg, ts.testToken, now=T0)
    sessions.submit_session(db, cfg, ts.testToken, {str(i): 0 for i in range(6)}, now=T0)
    assert cand.currentRound == 2

    technical = _issue(db, cfg, cand, round_no=2)
    sessions.start_session(db, cfg, technical.testToken, now=T0)
    out = qualification.recalculate_cutoffs(db, cfg, drive.driveSessionId, aptitude_cutoff=65, now=T0)
    assert out["frozen"] == 1

    assert sessions.session_result(db, ts)["passed"] is True
    assert cand.qualificationStatus == "qualified"


def test_answer_and_submit_report_a_link_they_expired(db, cfg, drive):
    cand = _first_candidate(db, drive.driveSessionId)
    ts = _issue(db, cfg, cand)
    later = T0 + timedelta(hours=25)

    late = sessions.record_answer(db, cfg, ts.testToken, 0, 1, now=later)
    assert (late["accepted"], late["reason"]) == (False, "LINK_EXPIRED")
    assert late["result"]["status"] == "expired"

    other = _issue(db, cfg, cand)
    assert other.testSessionId != ts.testSessionId
    out = sessions.submit_session(db, cfg, other.testToken, {}, now=later)
    assert (out["status"], out["completionReason"]) == ("expired", "link_expired")
