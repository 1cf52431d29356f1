from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from app.services import notifier as notifier_mod
from app.services.notifier import LogNotifier, NotificationError, WebhookNotifier, build_notifier


def _send(n):
    return n.send(kind="technical_test", to="a@example.com", subject="s", body="b", meta={"k": 1})


def test_webhook_posts_with_timeout_and_key(monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return SimpleNamespace(status_code=200, text='{"ok": true, "id": "m-1"}')

    monkeypatch.setattr(notifier_mod.requests, "post", fake_post)
    out = _send(WebhookNotifier("https://relay.example.com/send", api_key="k-1", timeout=3))

    assert out == {"ok": True, "id": "m-1"}
    assert calls[0]["timeout"] == 3
    assert calls[0]["headers"] == {"X-Api-Key": "k-1"}
    assert calls[0]["json"]["kind"] == "technical_test"


@pytest.mark.parametrize(
    "status,text,match",
    [
        (502, "bad gateway", "HTTP 502"),
        (200, '{"ok": false, "error": {"message": "mailbox full"}}', "mailbox full"),
    ],
)
def test_webhook_failures_raise(monkeypatch, status, text, match):
    monkeypatch.setattr(
        notifier_mod.requests, "post", lambda *a, **kw: SimpleNamespace(status_code=status, text=text)
    )
    with pytest.raises(NotificationError, match=match):
        _send(WebhookNotifier("https://relay.example.com/send"))


def test_webhook_timeout_is_a_notification_error(monkeypatch):
    def boom(*a, **kw):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(notifier_mod.requests, "post", boom)
    with pytest.raises(NotificationError, match="unreachable"):
        _send(WebhookNotifier("https://relay.example.com/send"))


def test_build_notifier_falls_back_to_log(cfg):
    assert isinstance(build_notifier(cfg), LogNotifier)
