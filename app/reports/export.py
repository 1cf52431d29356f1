from __future__ import annotations

import csv
import io
import json
from typing import Any

from app.reports.excel import build_candidates_workbook

EXPORT_FORMATS = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "json": "application/json",
}

CANDIDATE_HEADERS = [
    "Name",
    "Email",
    "Phone",
    "College",
    "Aptitude Score",
    "Technical Score",
    "Status",
    "Qualification",
    "Current Round",
    "Interview Scheduled",
    "Final Decision",
]


def candidate_rows(items: list[dict[str, Any]]) -> list[list[Any]]:
    rows = []
    for c in items:
        rows.append(
            [
                c["name"],
                c["email"],
                c["phone"],
                c["college"],
                "" if c["aptitudeScore"] is None else c["aptitudeScore"],
                "" if c["technicalScore"] is None else c["technicalScore"],
                c["registrationStatus"],
                c["qualificationStatus"] or "",
                c["currentRound"],
                "yes" if c["interviewScheduled"] else "no",
                c["finalDecision"],
            ]
        )
    return rows


def _csv_bytes(headers: list[str], rows: list[list[Any]]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8")


def render_candidates(fmt: str, *, drive: dict[str, Any], items: list[dict[str, Any]], timezone_display: str) -> bytes:
    if fmt == "json":
        return json.dumps({"drive": drive, "candidates": items}, separators=(",", ":")).encode("utf-8")
    rows = candidate_rows(items)
    if fmt == "xlsx":
        return build_candidates_workbook(
            drive=drive, headers=CANDIDATE_HEADERS, rows=rows, timezone_display=timezone_display
        )
    return _csv_bytes(CANDIDATE_HEADERS, rows)
