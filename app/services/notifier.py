from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional, Protocol

import requests

log = logging.getLogger(__name__)


class NotificationError(Exception):
    pass


class Notifier(Protocol):
    def send(self, *, kind: str, to: str, subject: str, body: str, meta: dict[str, Any]) -> dict[str, Any]:
        ...


def _parse_json_maybe(text: str) -> Any:
    s = str(text or "").strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError:
        return None


class WebhookNotifier:
    """
    Hands candidate messages to an external mail relay over HTTP.

    Every call is bounded by `timeout`; failures surface as NotificationError so the
    caller can record them per candidate.
    """

    def __init__(self, url: str, *, api_key: str = "", timeout: int = 10):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def send(self, *, kind: str, to: str, subject: str, body: str, meta: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": kind, "to": to, "subject": subject, "body": body, "meta": meta}
        headers: dict[str, str] = {}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key

        try:
            resp = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationError(f"notifier unreachable: {e}") from e

        raw_text = str(resp.text or "")
        if resp.status_code >= 400:
            raise NotificationError(f"notifier HTTP {resp.status_code}: {raw_text.strip()[:300] or 'no response body'}")

        parsed = _parse_json_maybe(raw_text)
        if isinstance(parsed, dict) and parsed.get("ok") is False:
            err_obj = parsed.get("error") if isinstance(parsed.get("error"), dict) else {}
            raise NotificationError(str((err_obj or {}).get("message") or "notifier rejected message"))

        return parsed if isinstance(parsed, dict) else {"ok": True}


class LogNotifier:
    """Used when no relay is configured: messages are only logged."""

    def send(self, *, kind: str, to: str, subject: str, body: str, meta: dict[str, Any]) -> dict[str, Any]:
        log.info("notification kind=%s subject=%r (no NOTIFY_WEBHOOK_URL, not delivered)", kind, subject)
        return {"ok": True, "channel": "log"}


_notifier: Optional[Notifier] = None
_notifier_lock = threading.Lock()


def build_notifier(cfg) -> Notifier:
    url = str(cfg.NOTIFY_WEBHOOK_URL or "").strip()
    if url:
        return WebhookNotifier(url, api_key=cfg.NOTIFY_API_KEY, timeout=cfg.NOTIFY_TIMEOUT_SECONDS)
    return LogNotifier()


def get_notifier(cfg) -> Notifier:
    global _notifier
    with _notifier_lock:
        if _notifier is None:
            _notifier = build_notifier(cfg)
        return _notifier


def set_notifier(notifier: Optional[Notifier]) -> None:
    global _notifier
    with _notifier_lock:
        _notifier = notifier
