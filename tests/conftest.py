from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from app.services.notifier import NotificationError


class FakeNotifier:
    """
    Records every message. Addresses in `fail_for` raise like an unreachable relay;
    addresses in `crash_for` raise an unexpected error.
    """

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.fail_for: set[str] = set()
        self.crash_for: set[str] = set()
        self._lock = threading.Lock()

    def send(self, *, kind: str, to: str, subject: str, body: str, meta: dict[str, Any]) -> dict[str, Any]:
        if to in self.fail_for:
            raise NotificationError(f"relay refused {to}")
        if to in self.crash_for:
            raise RuntimeError("smtp down")
        with self._lock:
            self.sent.append({"kind": kind, "to": to, "subject": subject, "body": body, "meta": meta})
        return {"ok": True}

    def sent_to(self, kind: str) -> list[str]:
        return sorted(m["to"] for m in self.sent if m["kind"] == kind)


@pytest.fixture()
def notifier():
    from app.services.notifier import set_notifier

    fake = FakeNotifier()
    set_notifier(fake)
    yield fake
    set_notifier(None)


@pytest.fixture()
def app_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, notifier: FakeNotifier):
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("ENV", "testing")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("RATE_LIMIT_GLOBAL", "100000 per minute")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "100000 per minute")
    monkeypatch.setenv("RATE_LIMIT_CANDIDATE", "100000 per minute")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://drives.example.com")

    # Prevent accidental pollution from any existing env config.
    monkeypatch.delenv("NOTIFY_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("INTERNAL_CRON_TOKEN", raising=False)
    monkeypatch.delenv("ENABLE_SCHEDULER", raising=False)

    from app import create_app
    from app.cache import cache_clear
    from app.middlewares.rate_limit import reset_rate_limits

    cache_clear()
    reset_rate_limits()

    app = create_app()
    app.testing = True

    with app.test_client() as client:
        yield app, client


@pytest.fixture()
def cfg(app_client):
    app, _client = app_client
    return app.config["CFG"]


@pytest.fixture()
def db(app_client):
    from app.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def make_question(db, *, round_no: int = 1, correct: int = 0, text: str = "", drive_id: str = "", job_id: str = ""):
    from app.actions.question_bank import create_question

    return create_question(
        db,
        {
            "question": text or f"Round {round_no} question",
            "options": ["A", "B", "C", "D"],
            "correctAnswer": correct,
            "testRound": round_no,
            "driveSessionId": drive_id,
            "jobId": job_id,
        },
        actor=None,
    )


def seed_questions(db, *, round_no: int = 1, count: int = 10, correct: int = 0) -> None:
    for i in range(count):
        make_question(db, round_no=round_no, correct=correct, text=f"R{round_no} Q{i}")
    db.flush()


def roster(n: int, *, prefix: str = "cand") -> list[dict[str, str]]:
    return [{"name": f"Candidate {i}", "email": f"{prefix}{i}@example.com", "phone": f"98{i:08d}"} for i in range(n)]


def create_drive(db, cfg, *, rows=None, **config) -> str:
    from app.actions.registry import create_drive as _create

    out = _create(
        db,
        cfg,
        config={"name": "Spring Walk-in", "questionCount": 10, "testDuration": 30, **config},
        roster=rows if rows is not None else roster(3),
        actor=None,
    )
    db.flush()
    return out["driveSessionId"]
