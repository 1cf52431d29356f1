from __future__ import annotations

import json
from io import BytesIO
from typing import Any

from flask import Blueprint, request, send_file

from app.actions.roster import read_roster_file
from app.routes.common import query_args, rest_handle, run_action
from app.utils.errors import ApiError
from app.utils.validators import optional_json, require_json

drives_bp = Blueprint("drives", __name__)


def _drive_payload_from_request() -> dict[str, Any]:
    """JSON `{config, roster}` or multipart with a `file` part and form/`config` fields."""
    if not request.files:
        return require_json()

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ApiError("BAD_REQUEST", "Missing roster file")
    roster = read_roster_file(upload.read(), upload.filename)

    raw_config = request.form.get("config")
    if raw_config:
        try:
            config = json.loads(raw_config)
        except ValueError as e:
            raise ApiError("BAD_REQUEST", "config must be a JSON object") from e
        if not isinstance(config, dict):
            raise ApiError("BAD_REQUEST", "config must be a JSON object")
    else:
        config = {k: v for k, v in request.form.items()}
    return {"config": config, "roster": roster}


@drives_bp.post("")
def create_drive():
    return rest_handle("DRIVE_CREATE", _drive_payload_from_request(), status=201)


@drives_bp.get("")
def list_drives():
    return rest_handle("DRIVE_LIST", query_args())


@drives_bp.get("/<drive_id>")
def get_drive(drive_id: str):
    return rest_handle("DRIVE_GET", {"driveSessionId": drive_id})


@drives_bp.delete("/<drive_id>")
def delete_drive(drive_id: str):
    return rest_handle("DRIVE_DELETE", {"driveSessionId": drive_id})


@drives_bp.post("/<drive_id>/stage")
def set_stage(drive_id: str):
    body = require_json()
    return rest_handle("DRIVE_STAGE_SET", {**body, "driveSessionId": drive_id})


@drives_bp.get("/<drive_id>/status")
def drive_status(drive_id: str):
    return rest_handle("DRIVE_STATUS_GET", {"driveSessionId": drive_id})


@drives_bp.post("/<drive_id>/roster")
def import_roster(drive_id: str):
    payload = _drive_payload_from_request()
    return rest_handle("DRIVE_ROSTER_IMPORT", {"roster": payload.get("roster") or [], "driveSessionId": drive_id})


@drives_bp.put("/<drive_id>/cutoffs")
def update_cutoffs(drive_id: str):
    body = require_json()
    return rest_handle("DRIVE_CUTOFFS_UPDATE", {**body, "driveSessionId": drive_id})


@drives_bp.get("/<drive_id>/candidates")
def list_candidates(drive_id: str):
    return rest_handle("CANDIDATES_FILTER", {**query_args(), "driveSessionId": drive_id})


@drives_bp.get("/<drive_id>/export")
def export_candidates(drive_id: str):
    out = run_action("CANDIDATES_EXPORT", {**query_args(), "driveSessionId": drive_id})
    return send_file(
        BytesIO(out["content"]),
        mimetype=out["mimetype"],
        as_attachment=True,
        download_name=out["filename"],
    )


@drives_bp.get("/<drive_id>/candidates/<candidate_id>")
def get_candidate(drive_id: str, candidate_id: str):
    return rest_handle("CANDIDATE_GET", {"driveSessionId": drive_id, "driveCandidateId": candidate_id})


@drives_bp.post("/<drive_id>/candidates/<candidate_id>/tests")
def issue_test(drive_id: str, candidate_id: str):
    body = optional_json()
    return rest_handle(
        "TEST_ISSUE", {**body, "driveSessionId": drive_id, "driveCandidateId": candidate_id}, status=201
    )


@drives_bp.get("/<drive_id>/candidates/<candidate_id>/test-details")
def test_details(drive_id: str, candidate_id: str):
    return rest_handle("CANDIDATE_TEST_DETAILS", {"driveSessionId": drive_id, "driveCandidateId": candidate_id})


@drives_bp.post("/<drive_id>/candidates/<candidate_id>/final-decision")
def final_decision(drive_id: str, candidate_id: str):
    body = require_json()
    return rest_handle("FINAL_DECISION_SET", {**body, "driveSessionId": drive_id, "driveCandidateId": candidate_id})


@drives_bp.put("/<drive_id>/candidates/<candidate_id>/round")
def override_round(drive_id: str, candidate_id: str):
    body = require_json()
    return rest_handle(
        "CANDIDATE_ROUND_OVERRIDE", {**body, "driveSessionId": drive_id, "driveCandidateId": candidate_id}
    )


@drives_bp.post("/<drive_id>/bulk-schedule-interviews")
def bulk_schedule_interviews(drive_id: str):
    body = require_json()
    return rest_handle("INTERVIEWS_BULK_SCHEDULE", {**body, "driveSessionId": drive_id})


@drives_bp.post("/<drive_id>/send-next-round")
def send_next_round(drive_id: str):
    return rest_handle("NEXT_ROUND_SEND", {"driveSessionId": drive_id})


@drives_bp.post("/<drive_id>/send-screening")
def send_screening(drive_id: str):
    body = optional_json()
    return rest_handle("SCREENING_SEND", {**body, "driveSessionId": drive_id})
