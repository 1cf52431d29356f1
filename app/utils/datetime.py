from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from dateutil import parser as dt_parser


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    # Millisecond precision, "Z" suffix: stored timestamps compare lexically.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    x = dt.astimezone(timezone.utc)
    x = x.replace(microsecond=(x.microsecond // 1000) * 1000)
    return x.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_utc_now() -> str:
    return to_iso_utc(utc_now())


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            return None
        try:
            dt = dt_parser.parse(s)
        except (ValueError, OverflowError):
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_display_tz(dt: datetime, tz_name: str) -> str:
    try:
        tz = ZoneInfo(tz_name)
    except Exception:
        tz = timezone.utc

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz).replace(microsecond=0).isoformat()
