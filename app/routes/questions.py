from __future__ import annotations

from flask import Blueprint

from app.routes.common import query_args, rest_handle
from app.utils.validators import require_json

questions_bp = Blueprint("questions", __name__)


@questions_bp.get("")
def list_questions():
    return rest_handle("QUESTION_LIST", query_args())


@questions_bp.post("")
def create_question():
    return rest_handle("QUESTION_CREATE", require_json(), status=201)


@questions_bp.post("/bulk")
def bulk_create():
    return rest_handle("QUESTION_BULK_CREATE", require_json(), status=201)


@questions_bp.put("/<question_id>")
def update_question(question_id: str):
    return rest_handle("QUESTION_UPDATE", {**require_json(), "questionId": question_id})


@questions_bp.delete("/<question_id>")
def delete_question(question_id: str):
    return rest_handle("QUESTION_DELETE", {"questionId": question_id})
