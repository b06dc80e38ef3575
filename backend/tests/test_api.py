import re

from sqlalchemy.exc import OperationalError

from mindscreen.api.deps import get_registry
from mindscreen.db.models import Response
from mindscreen.main import app
from mindscreen.services.scoring_registry import InMemoryScoringRegistry

CODE_PATTERN = re.compile(r"[0-9A-F]{8}-[0-9A-Z]{4}")


def error_of(r):
    return r.json()["detail"]["error"]


def begin(client, questionnaire_id="phq-9", email="respondent@example.com"):
    r = client.post("/api/survey/begin", json={"questionnaire_id": questionnaire_id})
    assert r.status_code == 200
    run_id = r.json()["run_id"]

    r = client.post("/api/survey/identity", json={"run_id": run_id, "email": email, "name": "Sam"})
    assert r.status_code == 200
    return run_id, r.json()


def answer_all(client, run_id, body, values):
    """Answer the current question and advance, once per value. None skips the answer."""
    for value in values:
        question_id = body["next"]["id"]
        if value is not None:
            r = client.post("/api/survey/answer", json={"run_id": run_id, "question_id": question_id, "value": value})
            assert r.status_code == 200, r.json()
        r = client.post("/api/survey/advance", json={"run_id": run_id})
        assert r.status_code == 200, r.json()
        body = r.json()
    return body


def submitted(client, questionnaire_id, values):
    run_id, body = begin(client, questionnaire_id)
    body = answer_all(client, run_id, body, values)
    assert body["state"] == "pending_submit"
    return client.post("/api/survey/submit", json={"run_id": run_id})


# ---- catalog ----

def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_questionnaire_listing_and_detail(client):
    r = client.get("/api/questionnaires")
    assert r.status_code == 200
    ids = {q["id"] for q in r.json()["questionnaires"]}
    assert ids == {"phq-9", "gad-7", "pss-10"}

    r = client.get("/api/questionnaires/phq-9")
    questions = r.json()["questionnaire"]["questions"]
    assert len(questions) == 10
    assert [o["value"] for o in questions[0]["options"]] == ["0", "1", "2", "3"]
    assert questions[-1]["constraints"] == {"required": False}


def test_unknown_questionnaire(client):
    r = client.get("/api/questionnaires/nope")
    assert r.status_code == 404
    assert error_of(r)["code"] == "UNKNOWN_QUESTIONNAIRE"

    r = client.post("/api/survey/begin", json={"questionnaire_id": "nope"})
    assert r.status_code == 404


# ---- collection over HTTP ----

def test_begin_prompts_for_identity_first(client):
    r = client.post("/api/survey/begin", json={"questionnaire_id": "gad-7"})
    body = r.json()
    assert body["state"] == "collecting_identity"
    assert body["next"]["type"] == "identity"
    assert body["progress"] == {"answered": 0, "total": 7}


def test_invalid_email_is_rejected(client):
    r = client.post("/api/survey/begin", json={"questionnaire_id": "gad-7"})
    run_id = r.json()["run_id"]

    r = client.post("/api/survey/identity", json={"run_id": run_id, "email": "nobody"})
    assert r.status_code == 400
    assert error_of(r)["code"] == "INVALID_EMAIL"


def test_advance_without_answer_and_bad_value(client):
    run_id, body = begin(client)
    assert body["next"]["id"] == "phq9_1"

    r = client.post("/api/survey/advance", json={"run_id": run_id})
    assert r.status_code == 400
    assert error_of(r)["code"] == "MISSING_ANSWER"
    assert error_of(r)["question_id"] == "phq9_1"

    r = client.post("/api/survey/answer", json={"run_id": run_id, "question_id": "phq9_1", "value": 9})
    assert r.status_code == 400
    assert error_of(r)["code"] == "INVALID_ANSWER"


def test_retreat_shows_previous_answer(client):
    run_id, body = begin(client)
    answer_all(client, run_id, body, [3])

    r = client.post("/api/survey/retreat", json={"run_id": run_id})
    assert r.json()["next"]["id"] == "phq9_1"
    assert r.json()["next"]["answer"] == "3"

    # already at the first question
    r = client.post("/api/survey/retreat", json={"run_id": run_id})
    assert r.json()["next"]["id"] == "phq9_1"


def test_blocked_submit_then_review_and_fix(client):
    run_id, body = begin(client)
    answer_all(client, run_id, body, [1] * 9 + [None])
    client.post("/api/survey/answer", json={"run_id": run_id, "question_id": "phq9_5", "value": None})

    r = client.post("/api/survey/submit", json={"run_id": run_id})
    assert r.status_code == 400
    err = error_of(r)
    assert err["code"] == "REQUIRED_UNANSWERED"
    assert err["question_id"] == "phq9_5"
    assert err["missing"] == ["phq9_5"]

    r = client.post("/api/survey/resume", json={"run_id": run_id})
    assert r.json()["state"] == "reviewing_required"
    assert r.json()["missing_index"] == 4

    r = client.post("/api/survey/review", json={"run_id": run_id})
    assert r.json()["state"] == "answering"
    assert r.json()["next"]["id"] == "phq9_5"

    client.post("/api/survey/answer", json={"run_id": run_id, "question_id": "phq9_5", "value": 1})
    # phq9_5 .. phq9_notes
    body = answer_all(client, run_id, r.json(), [None] * 6)
    assert body["state"] == "pending_submit"

    r = client.post("/api/survey/submit", json={"run_id": run_id})
    assert r.status_code == 200
    assert r.json()["result"]["score"] == 9


def test_out_of_order_operations_are_conflicts(client):
    run_id, _ = begin(client)

    r = client.post("/api/survey/submit", json={"run_id": run_id})
    assert r.status_code == 409
    assert error_of(r)["code"] == "INVALID_TRANSITION"

    r = client.post("/api/survey/review", json={"run_id": run_id})
    assert r.status_code == 409


def test_unknown_run(client):
    r = client.post("/api/survey/advance", json={"run_id": "missing"})
    assert r.status_code == 404
    assert error_of(r)["code"] == "UNKNOWN_RUN"


def test_abandoned_run_is_inactive(client):
    run_id, _ = begin(client)
    r = client.post("/api/survey/abandon", json={"run_id": run_id})
    assert r.json()["state"] == "abandoned"
    assert r.json()["done"] is True

    r = client.post("/api/survey/answer", json={"run_id": run_id, "question_id": "phq9_1", "value": 1})
    assert r.status_code == 409
    assert error_of(r)["code"] == "STATUS_INACTIVE"


# ---- submission, scoring, notification ----

def test_flagged_submission_is_scored_stored_and_notified(client, notifier):
    r = submitted(client, "phq-9", [2] * 9 + ["struggling lately"])
    assert r.status_code == 200
    body = r.json()

    assert body["state"] == "submitted"
    assert body["done"] is True
    assert CODE_PATTERN.fullmatch(body["unique_code"])
    assert body["result"]["score"] == 18
    assert body["result"]["risk_level"] == "moderately severe"
    assert body["result"]["flagged_for_review"] is True
    assert body["result"]["answer_scores"]["phq9_notes"] == 0

    assert len(notifier.sent) == 1
    assert notifier.sent[0][1:] == (body["unique_code"], "moderately severe")

    r = client.get(f"/api/responses/{body['unique_code']}")
    stored = r.json()["response"]
    assert stored["status"] == "scored"
    assert stored["result"]["score"] == 18
    assert stored["answers"][-1]["value"] == "struggling lately"


def test_unflagged_submission_does_not_notify(client, notifier):
    r = submitted(client, "gad-7", [0] * 7)
    assert r.json()["result"]["risk_level"] == "minimal"
    assert r.json()["result"]["flagged_for_review"] is False
    assert notifier.sent == []


def test_submitted_run_cannot_be_submitted_again(client, db_session):
    run_id, body = begin(client, "gad-7")
    answer_all(client, run_id, body, [1] * 7)
    assert client.post("/api/survey/submit", json={"run_id": run_id}).status_code == 200

    r = client.post("/api/survey/submit", json={"run_id": run_id})
    assert r.status_code == 409
    assert error_of(r)["code"] == "STATUS_INACTIVE"
    assert db_session.query(Response).count() == 1


def test_recalculation_twice_gives_identical_results(client, notifier):
    code = submitted(client, "phq-9", [2] * 9 + [None]).json()["unique_code"]

    first = client.post(f"/api/responses/{code}/recalculate")
    second = client.post(f"/api/responses/{code}/recalculate")

    assert first.status_code == second.status_code == 200
    assert first.json()["result"] == second.json()["result"]
    assert first.json()["result"]["score"] == 18
    # the flag never went false -> true again
    assert len(notifier.sent) == 1

    events = client.get("/debug/latest").json()["events"]
    kinds = [e["event_type"] for e in events]
    assert kinds.count("response.submitted") == 1
    assert kinds.count("response.scored") == 1
    assert kinds.count("response.flagged") == 1
    assert kinds.count("response.rescored") == 2


def test_recalculate_unknown_response(client):
    r = client.post("/api/responses/NOPE-0000/recalculate")
    assert r.status_code == 404
    assert error_of(r)["code"] == "UNKNOWN_RESPONSE"


def test_missing_config_marks_response_scoring_failed(client, notifier):
    app.dependency_overrides[get_registry] = lambda: InMemoryScoringRegistry([])

    r = submitted(client, "phq-9", [3] * 9 + [None])
    assert r.status_code == 422
    err = error_of(r)
    assert err["code"] == "CONFIG_NOT_FOUND"
    code = err["unique_code"]

    stored = client.get(f"/api/responses/{code}").json()["response"]
    assert stored["status"] == "scoring_failed"
    assert stored["result"] is None
    assert len(stored["answers"]) == 9
    assert notifier.sent == []

    # once a config exists, recalculation scores the stored answers
    del app.dependency_overrides[get_registry]
    r = client.post(f"/api/responses/{code}/recalculate")
    assert r.status_code == 200
    assert r.json()["result"]["risk_level"] == "severe"
    assert client.get(f"/api/responses/{code}").json()["response"]["status"] == "scored"
    assert len(notifier.sent) == 1


def test_failed_recalculation_keeps_previous_result(client):
    code = submitted(client, "gad-7", [3] * 7).json()["unique_code"]

    app.dependency_overrides[get_registry] = lambda: InMemoryScoringRegistry([])
    r = client.post(f"/api/responses/{code}/recalculate")
    assert r.status_code == 422
    del app.dependency_overrides[get_registry]

    stored = client.get(f"/api/responses/{code}").json()["response"]
    assert stored["status"] == "scored"
    assert stored["result"]["score"] == 21
    assert stored["result"]["risk_level"] == "severe"

    kinds = [e["event_type"] for e in client.get("/debug/latest").json()["events"]]
    assert "response.scoring_failed" in kinds


def test_scoring_config_lookup(client):
    r = client.get("/api/scoring/configs/pss-10")
    assert r.status_code == 200
    body = r.json()
    assert body["config"]["key"] == "stress"
    assert body["config"]["max_score"] == 40
    assert set(body["recommendations"]) == {"low", "moderate", "high"}

    r = client.get("/api/scoring/configs/wellbeing-5")
    assert r.status_code == 422
    assert error_of(r)["code"] == "CONFIG_NOT_FOUND"


# ---- run storage ----

def test_failed_save_leaves_the_run_open_for_another_submit(client, db_session, monkeypatch, notifier):
    run_id, body = begin(client, "gad-7")
    answer_all(client, run_id, body, [3] * 7)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", broken_commit)
    r = client.post("/api/survey/submit", json={"run_id": run_id})
    assert r.status_code == 503
    assert error_of(r)["code"] == "STORAGE_UNAVAILABLE"
    monkeypatch.undo()

    r = client.post("/api/survey/resume", json={"run_id": run_id})
    assert r.json()["state"] == "pending_submit"
    assert "unique_code" not in r.json()
    assert db_session.query(Response).count() == 0

    r = client.post("/api/survey/submit", json={"run_id": run_id})
    assert r.status_code == 200
    assert r.json()["result"]["risk_level"] == "severe"
    assert db_session.query(Response).count() == 1
    assert len(notifier.sent) == 1


def test_finished_runs_drop_their_state_machine(client, store):
    run_id, body = begin(client, "gad-7")
    answer_all(client, run_id, body, [0] * 7)
    code = client.post("/api/survey/submit", json={"run_id": run_id}).json()["unique_code"]

    kept = store.get_session(run_id)
    assert kept["machine"] is None
    assert kept["state"] == "submitted"

    r = client.post("/api/survey/resume", json={"run_id": run_id})
    assert r.json()["state"] == "submitted"
    assert r.json()["done"] is True
    assert r.json()["unique_code"] == code
    assert r.json()["progress"] == {"answered": 7, "total": 7}

    other, _ = begin(client, "gad-7")
    client.post("/api/survey/abandon", json={"run_id": other})
    assert store.get_session(other)["machine"] is None
    assert client.post("/api/survey/resume", json={"run_id": other}).json()["state"] == "abandoned"

    r = client.post("/api/survey/abandon", json={"run_id": other})
    assert r.status_code == 409
    assert error_of(r)["code"] == "STATUS_INACTIVE"
