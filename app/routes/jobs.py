from __future__ import annotations

from flask import Blueprint

from app.routes.common import rest_handle
from app.utils.validators import optional_json

jobs_bp = Blueprint("jobs", __name__)


@jobs_bp.post("/expire-sessions")
def expire_sessions():
    """Cron entry point; requires `X-Internal-Token` = INTERNAL_CRON_TOKEN."""
    return rest_handle("TEST_SESSIONS_EXPIRE", optional_json(), allow_internal=True)
