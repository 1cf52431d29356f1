from __future__ import annotations


def _question(**overrides):
    body = {
        "question": "2 + 2 = ?",
        "options": ["3", "4", "5", "22"],
        "correctAnswer": 1,
        "difficulty": "easy",
        "category": "arithmetic",
        "tags": ["math", " "],
    }
    body.update(overrides)
    return body


def test_question_crud(app_client):
    _app, client = app_client

    res = client.post("/api/v1/questions", json=_question())
    assert res.status_code == 201
    created = res.get_json()["data"]
    qid = created["questionId"]
    assert qid.startswith("Q-")
    assert created["testRound"] == 1
    assert created["tags"] == ["math"]

    res = client.put(f"/api/v1/questions/{qid}", json={"correctAnswer": 2, "difficulty": "hard"})
    assert res.status_code == 200
    updated = res.get_json()["data"]
    assert (updated["correctAnswer"], updated["difficulty"], updated["question"]) == (2, "hard", "2 + 2 = ?")

    res = client.get("/api/v1/questions?category=arithmetic")
    assert [q["questionId"] for q in res.get_json()["data"]["items"]] == [qid]

    assert client.delete(f"/api/v1/questions/{qid}").status_code == 200
    assert client.delete(f"/api/v1/questions/{qid}").status_code == 404
    assert client.get("/api/v1/questions").get_json()["data"]["items"] == []


def test_question_validation(app_client):
    _app, client = app_client
    assert client.post("/api/v1/questions", json=_question(options=["a", "b"])).status_code == 400
    assert client.post("/api/v1/questions", json=_question(correctAnswer=4)).status_code == 400
    assert client.post("/api/v1/questions", json=_question(testRound=3)).status_code == 400
    assert client.post("/api/v1/questions", json=_question(difficulty="brutal")).status_code == 400
    assert client.post("/api/v1/questions", json=_question(question="  ")).status_code == 400
    assert client.post("/api/v1/questions", data="not json", content_type="text/plain").status_code == 400


def test_bulk_create_reports_bad_items(app_client):
    _app, client = app_client
    res = client.post(
        "/api/v1/questions/bulk",
        json={"items": [_question(), _question(correctAnswer=9), "nope", _question(testRound=2)]},
    )
    assert res.status_code == 201
    data = res.get_json()["data"]
    assert data["created"] == 2
    assert [e["index"] for e in data["errors"]] == [1, 2]

    res = client.get("/api/v1/questions?testRound=2")
    assert len(res.get_json()["data"]["items"]) == 1


def test_list_scopes_to_drive(app_client):
    _app, client = app_client
    client.post("/api/v1/questions", json=_question(question="shared"))
    client.post("/api/v1/questions", json=_question(question="mine", driveSessionId="DRV-a"))
    client.post("/api/v1/questions", json=_question(question="theirs", driveSessionId="DRV-b"))

    res = client.get("/api/v1/questions?driveSessionId=DRV-a")
    assert sorted(q["question"] for q in res.get_json()["data"]["items"]) == ["mine", "shared"]
