from __future__ import annotations

from flask import Blueprint

from app.routes.common import rest_handle
from app.utils.validators import optional_json, require_json

candidate_bp = Blueprint("candidate", __name__)


@candidate_bp.get("/register/<token>")
def registration_info(token: str):
    return rest_handle("REGISTRATION_GET", {"token": token})


@candidate_bp.post("/register/<token>")
def register(token: str):
    body = require_json()
    return rest_handle("REGISTRATION_SUBMIT", {**body, "token": token})


@candidate_bp.get("/test/<token>")
def fetch_test(token: str):
    return rest_handle("TEST_FETCH", {"token": token})


@candidate_bp.get("/test/<token>/status")
def test_status(token: str):
    return rest_handle("TEST_STATUS", {"token": token})


@candidate_bp.post("/test/<token>/start")
def start_test(token: str):
    return rest_handle("TEST_START", {"token": token})


@candidate_bp.post("/test/<token>/answer")
def answer(token: str):
    body = require_json()
    return rest_handle("TEST_ANSWER", {**body, "token": token})


@candidate_bp.post("/test/<token>/submit")
def submit(token: str):
    body = optional_json()
    return rest_handle("TEST_SUBMIT", {**body, "token": token})
