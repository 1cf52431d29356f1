from __future__ import annotations

import csv
import io
import logging
from typing import Any, Iterable
from zipfile import BadZipFile

from openpyxl import load_workbook

from app.utils.errors import ApiError
from app.utils.validators import is_valid_email, normalize_email

log = logging.getLogger(__name__)

# Canonical field -> accepted header spellings (compared case-insensitively).
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "full name", "fullname", "candidate name"),
    "email": ("email", "email address", "e-mail", "mail"),
    "phone": ("phone", "mobile", "phone number", "mobile number", "contact"),
    "college": ("college", "institution", "university", "college name"),
}

_ALIAS_LOOKUP = {alias: field for field, aliases in FIELD_ALIASES.items() for alias in aliases}


def _canonical_key(header: Any) -> str:
    key = " ".join(str(header or "").strip().lower().replace("_", " ").split())
    return _ALIAS_LOOKUP.get(key, "")


def _normalize_row(raw: dict[str, Any]) -> dict[str, str]:
    out = {"name": "", "email": "", "phone": "", "college": ""}
    for k, v in (raw or {}).items():
        field = _canonical_key(k)
        if field and not out[field]:
            out[field] = "" if v is None else str(v).strip()
    return out


def _read_csv(content: bytes) -> list[dict[str, Any]]:
    text = content.decode("utf-8-sig", errors="replace")
    return [dict(r) for r in csv.DictReader(io.StringIO(text))]


def _read_xlsx(content: bytes) -> list[dict[str, Any]]:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (OSError, BadZipFile, KeyError) as e:
        raise ApiError("BAD_REQUEST", "Roster file is not a readable .xlsx workbook") from e
    try:
        if not wb.sheetnames:
            return []
        ws = wb[wb.sheetnames[0]]
        rows = ws.iter_rows(values_only=True)
        headers = next(rows, None)
        if not headers:
            return []
        out: list[dict[str, Any]] = []
        for values in rows:
            if values is None or all(v is None or str(v).strip() == "" for v in values):
                continue
            out.append({str(h or ""): v for h, v in zip(headers, values)})
        return out
    finally:
        wb.close()


def read_roster_file(content: bytes, filename: str) -> list[dict[str, Any]]:
    name = str(filename or "").strip().lower()
    if name.endswith(".xlsx"):
        return _read_xlsx(content)
    if name.endswith(".csv") or not name:
        return _read_csv(content)
    raise ApiError("BAD_REQUEST", "Roster file must be .csv or .xlsx")


def validate_roster(
    rows: Iterable[dict[str, Any]],
    *,
    existing_emails: set[str] | None = None,
    max_rows: int | None = None,
) -> tuple[list[dict[str, str]], list[dict[str, Any]]]:
    """
    Split raw roster rows into importable candidates and skipped-row reports.

    Row numbers are 1-based over the data rows. A skipped row never blocks the others.
    """

    rows = list(rows or [])
    if max_rows is not None and len(rows) > max_rows:
        raise ApiError("BAD_REQUEST", f"Roster exceeds {max_rows} rows", details={"rows": len(rows)})

    seen = set(existing_emails or set())
    valid: list[dict[str, str]] = []
    skipped: list[dict[str, Any]] = []

    for idx, raw in enumerate(rows, start=1):
        if not isinstance(raw, dict):
            skipped.append({"row": idx, "email": "", "reason": "row is not an object"})
            continue
        row = _normalize_row(raw)
        email = normalize_email(row["email"])
        if not row["name"]:
            skipped.append({"row": idx, "email": email, "reason": "missing name"})
            continue
        if not email:
            skipped.append({"row": idx, "email": "", "reason": "missing email"})
            continue
        if not is_valid_email(email):
            skipped.append({"row": idx, "email": email, "reason": "invalid email"})
            continue
        if email in seen:
            skipped.append({"row": idx, "email": email, "reason": "duplicate email"})
            continue
        seen.add(email)
        row["email"] = email
        valid.append(row)

    if skipped:
        log.info("roster validation skipped=%s valid=%s", len(skipped), len(valid))
    return valid, skipped
