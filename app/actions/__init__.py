from __future__ import annotations

from typing import Any, Callable

from app.actions import bulk, qualification, question_bank, registry, test_sessions
from app.actions.helpers import Actor
from app.utils.errors import ApiError

Handler = Callable[..., Any]

ACTION_HANDLERS: dict[str, Handler] = {
    # drives
    "DRIVE_CREATE": registry.drive_create,
    "DRIVE_GET": registry.drive_get,
    "DRIVE_LIST": registry.drive_list,
    "DRIVE_DELETE": registry.drive_delete,
    "DRIVE_STAGE_SET": registry.drive_stage_set,
    "DRIVE_ROSTER_IMPORT": registry.drive_roster_import,
    "DRIVE_STATUS_GET": registry.drive_status_get,
    "DRIVE_CUTOFFS_UPDATE": qualification.cutoffs_update,
    # candidates
    "CANDIDATE_GET": registry.candidate_get,
    "CANDIDATES_FILTER": bulk.candidates_filter,
    "CANDIDATES_EXPORT": bulk.candidates_export,
    "CANDIDATE_TEST_DETAILS": test_sessions.candidate_test_details_get,
    "FINAL_DECISION_SET": bulk.final_decision_set,
    "CANDIDATE_ROUND_OVERRIDE": qualification.round_override,
    "INTERVIEWS_BULK_SCHEDULE": bulk.interviews_bulk_schedule,
    "NEXT_ROUND_SEND": bulk.next_round_send,
    "SCREENING_SEND": bulk.screening_send,
    # candidate-facing
    "REGISTRATION_GET": registry.registration_get,
    "REGISTRATION_SUBMIT": registry.registration_submit,
    "TEST_ISSUE": test_sessions.test_issue,
    "TEST_FETCH": test_sessions.test_fetch,
    "TEST_STATUS": test_sessions.test_status,
    "TEST_START": test_sessions.test_start,
    "TEST_ANSWER": test_sessions.test_answer,
    "TEST_SUBMIT": test_sessions.test_submit,
    # question bank
    "QUESTION_LIST": question_bank.question_list,
    "QUESTION_CREATE": question_bank.question_create,
    "QUESTION_BULK_CREATE": question_bank.question_bulk_create,
    "QUESTION_UPDATE": question_bank.question_update,
    "QUESTION_DELETE": question_bank.question_delete,
    # jobs
    "TEST_SESSIONS_EXPIRE": test_sessions.test_sessions_expire,
}

# Reachable without an operator identity; everything keyed by an unguessable token.
PUBLIC_ACTIONS = {
    "REGISTRATION_GET",
    "REGISTRATION_SUBMIT",
    "TEST_FETCH",
    "TEST_STATUS",
    "TEST_START",
    "TEST_ANSWER",
    "TEST_SUBMIT",
}

# Only callable with the internal cron token.
INTERNAL_ACTIONS = {"TEST_SESSIONS_EXPIRE"}


def is_public_action(action: str) -> bool:
    return str(action or "").upper().strip() in PUBLIC_ACTIONS


def dispatch(action: str, data: Any, auth: Actor | None, db, cfg) -> Any:
    action_u = str(action or "").upper().strip()
    handler = ACTION_HANDLERS.get(action_u)
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    return handler(data or {}, auth, db, cfg)
