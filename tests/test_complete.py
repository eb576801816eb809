from conftest import OTHER_USER_ID, PREFIX

from studify.auth import create_access_token


def _complete(client, attempt_id, responses=None, headers=None):
    body = {"attemptId": attempt_id}
    if responses is not None:
        body["responses"] = responses
    return client.post(f"{PREFIX}/complete", json=body, headers=headers or {})


def _final_answers(questions, answers):
    return [{"question_id": q.id, "selected_answer": a} for q, a in zip(questions, answers) if a is not None]


def test_complete_with_final_batch(client, repo, seed, start):
    template, questions = seed(count=10)
    attempt_id = start(template.id)["attempt"]["id"]

    r = _complete(client, attempt_id, _final_answers(questions, ["A"] * 7 + ["B", "C"]))

    assert r.status_code == 200
    summary = r.json()["data"]
    assert summary["status"] == "completed"
    assert summary["attempt_id"] == attempt_id
    assert (summary["answered_questions"], summary["correct_answers"], summary["incorrect_answers"]) == (9, 7, 2)
    assert (summary["skipped_questions"], summary["total_points"], summary["max_points"]) == (1, 7, 10)
    assert summary["percentage"] == 70 and summary["score"] == 70
    assert summary["completed_at"] is not None

    attempt = repo.attempts[attempt_id]
    assert attempt.status.value == "completed"
    assert attempt.answered_questions + attempt.skipped_questions == attempt.total_questions
    assert attempt.correct_answers + attempt.incorrect_answers == attempt.answered_questions
    assert repo.routine_calls[0] == ("complete_exam_attempt", attempt_id)


def test_complete_is_idempotent(client, repo, seed, start):
    template, questions = seed(count=4)
    attempt_id = start(template.id)["attempt"]["id"]
    first = _complete(client, attempt_id, _final_answers(questions, ["A", "A", "B"])).json()["data"]
    calls = list(repo.routine_calls)
    stored = repo.attempts[attempt_id]

    second = _complete(client, attempt_id, _final_answers(questions, ["A", "A", "A", "A"])).json()["data"]

    assert second["status"] == "already_completed"
    for key in ("correct_answers", "incorrect_answers", "skipped_questions", "total_points", "percentage", "completed_at"):
        assert second[key] == first[key]
    assert repo.routine_calls == calls
    assert repo.attempts[attempt_id] == stored


def test_manual_completion_matches_routine(client, repo, seed, start):
    answers = ["A", "B", None, "A", " A "]
    template, questions = seed(count=5)
    routine_id = start(template.id)["attempt"]["id"]
    routine = _complete(client, routine_id, _final_answers(questions, answers)).json()["data"]

    repo.server_routines = False
    manual_id = start(template.id)["attempt"]["id"]
    manual = _complete(client, manual_id, _final_answers(questions, answers)).json()["data"]

    assert manual["status"] == "completed"
    for key in ("answered_questions", "correct_answers", "incorrect_answers", "skipped_questions", "total_points", "max_points", "percentage"):
        assert manual[key] == routine[key]
    assert repo.attempts[manual_id].completed_at is not None


def test_complete_other_users_attempt_is_not_found(client, repo, seed, start):
    template, _ = seed(count=2)
    attempt_id = start(template.id)["attempt"]["id"]
    token = create_access_token(OTHER_USER_ID)

    r = _complete(client, attempt_id, headers={"Authorization": f"Bearer {token}"})

    assert r.status_code == 404
    assert repo.attempts[attempt_id].status.value == "started"
    assert repo.routine_calls == []


def test_complete_requires_attempt_id(client):
    r = client.post(f"{PREFIX}/complete", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Attempt ID is required"


def test_pause_and_resume(client, repo, seed, start):
    template, _ = seed(count=2)
    attempt_id = start(template.id)["attempt"]["id"]

    r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json={"status": "paused", "time_spent_seconds": 120})
    assert r.status_code == 200
    attempt = r.json()["data"]["attempt"]
    assert attempt["status"] == "paused"
    assert attempt["paused_at"] is not None
    assert attempt["time_spent_seconds"] == 120

    r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json={"status": "started"})
    assert r.json()["data"]["attempt"]["status"] == "started"


def test_patch_to_completed_scores_the_attempt(client, repo, seed, start):
    template, questions = seed(count=2)
    attempt_id = start(template.id)["attempt"]["id"]
    client.post(
        f"{PREFIX}/responses",
        json={"attempt_id": attempt_id, "question_id": questions[0].id, "user_answer": "A"},
    )

    r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json={"status": "completed"})

    assert r.status_code == 200
    attempt = r.json()["data"]["attempt"]
    assert attempt["status"] == "completed"
    assert attempt["completed_at"] is not None
    assert attempt["percentage"] == 50


def test_nothing_leaves_completed(client, seed, start):
    template, _ = seed(count=2)
    attempt_id = start(template.id)["attempt"]["id"]
    _complete(client, attempt_id)

    for body in ({"status": "started"}, {"status": "paused"}, {"time_spent_seconds": 5}):
        r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json=body)
        assert r.status_code == 400
        assert r.json()["error"] == "Attempt is already completed"

    r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json={"status": "completed"})
    assert r.status_code == 200


def test_patch_rejects_unknown_fields_and_empty_body(client, seed, start):
    template, _ = seed(count=1)
    attempt_id = start(template.id)["attempt"]["id"]

    r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json={"user_id": OTHER_USER_ID})
    assert r.status_code == 400
    assert r.json()["success"] is False

    r = client.patch(f"{PREFIX}/attempts/{attempt_id}", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "No fields to update"


def test_repeated_question_in_final_batch_keeps_last_answer(client, repo, seed, start, monkeypatch):
    template, questions = seed(count=2)
    attempt_id = start(template.id)["attempt"]["id"]
    batches = []
    upsert = repo.upsert_responses

    async def spy(attempt_id, rows):
        batches.append([row["question_id"] for row in rows])
        return await upsert(attempt_id, rows)

    monkeypatch.setattr(repo, "upsert_responses", spy)
    responses = [
        {"question_id": questions[0].id, "selected_answer": "B"},
        {"question_id": questions[1].id, "selected_answer": "A"},
        {"question_id": questions[0].id, "selected_answer": "A"},
    ]

    summary = _complete(client, attempt_id, responses).json()["data"]

    assert batches == [[questions[0].id, questions[1].id]]
    assert summary["correct_answers"] == 2
    assert summary["percentage"] == 100
    assert repo.responses[(attempt_id, questions[0].id)].user_answer == "A"
