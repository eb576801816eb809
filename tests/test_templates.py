from conftest import OTHER_USER_ID, PREFIX, USER_ID

from studify.auth import create_access_token


def _payload(**overrides):
    body = {
        "title": "Reading Comprehension",
        "category": "english",
        "difficulty_level": 2,
        "time_limit_minutes": 20,
        "passing_score": 70,
        "questions": [
            {"question_text": "Main idea?", "options": ["A", "B"], "correct_answer": "A", "subject_area": "Reading"},
            {"question_text": "Tone?", "options": ["A", "B"], "correct_answer": "B", "points": 2},
        ],
    }
    body.update(overrides)
    return body


def test_create_template_with_questions(client, repo):
    r = client.post(f"{PREFIX}/templates", json=_payload())

    assert r.status_code == 201
    data = r.json()["data"]
    template = data["template"]
    assert template["created_by"] == USER_ID
    assert template["total_questions"] == 2
    assert [q["question_number"] for q in data["questions"]] == [1, 2]
    assert len(repo.questions) == 2


def test_created_template_can_be_started(client, start):
    template_id = client.post(f"{PREFIX}/templates", json=_payload()).json()["data"]["template"]["id"]

    data = start(template_id)

    assert data["attempt"]["total_questions"] == 2
    assert data["attempt"]["time_limit_seconds"] == 1200


def test_template_requires_questions(client):
    r = client.post(f"{PREFIX}/templates", json=_payload(questions=[]))
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_duplicate_question_numbers_are_rejected(client, repo):
    questions = [
        {"question_number": 1, "question_text": "One", "correct_answer": "A"},
        {"question_number": 1, "question_text": "Also one", "correct_answer": "B"},
    ]

    r = client.post(f"{PREFIX}/templates", json=_payload(questions=questions))

    assert r.status_code == 400
    assert r.json()["error"] == "Question numbers must be unique"
    assert repo.templates == {}


def test_template_is_removed_when_questions_cannot_be_written(client, repo, monkeypatch):
    async def broken_insert(questions):
        raise RuntimeError("duplicate key")

    monkeypatch.setattr(repo, "_insert_questions", broken_insert)

    r = client.post(f"{PREFIX}/templates", json=_payload())

    assert r.status_code == 500
    assert r.json()["error"] == "Failed to create template questions"
    assert repo.templates == {}


def test_list_templates_featured_first(client, repo, seed):
    plain, _ = seed(count=1)
    featured, _ = seed(count=1)
    repo.templates[featured.id] = featured.model_copy(update={"is_featured": True})
    seed(count=1, is_active=False)

    r = client.get(f"{PREFIX}/templates")

    ids = [t["id"] for t in r.json()["data"]]
    assert ids == [featured.id, plain.id]

    r = client.get(f"{PREFIX}/templates", params={"featured": "true"})
    assert [t["id"] for t in r.json()["data"]] == [featured.id]


def test_category_filter(client, seed):
    seed(count=1)

    assert len(client.get(f"{PREFIX}/templates", params={"category": "math"}).json()["data"]) == 1
    assert len(client.get(f"{PREFIX}/templates", params={"category": "all"}).json()["data"]) == 1
    assert client.get(f"{PREFIX}/templates", params={"category": "science"}).json()["data"] == []


def test_get_template_hides_answers(client, seed):
    template, _ = seed(count=3)

    r = client.get(f"{PREFIX}/templates/{template.id}")

    assert r.status_code == 200
    questions = r.json()["data"]["questions"]
    assert len(questions) == 3
    assert all("correct_answer" not in q and "explanation" not in q for q in questions)


def test_update_template_only_by_creator(client, seed):
    template, _ = seed(count=1)

    r = client.put(f"{PREFIX}/templates/{template.id}", json={"title": "Algebra II", "passing_score": 80})
    assert r.status_code == 200
    assert r.json()["data"]["title"] == "Algebra II"
    assert r.json()["data"]["passing_score"] == 80

    token = create_access_token(OTHER_USER_ID)
    r = client.put(
        f"{PREFIX}/templates/{template.id}",
        json={"title": "Hijacked"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 404


def test_update_template_rejects_question_changes(client, seed):
    template, _ = seed(count=1)

    r = client.put(f"{PREFIX}/templates/{template.id}", json={"questions": []})

    assert r.status_code == 400


def test_delete_template_is_soft(client, repo, seed):
    template, _ = seed(count=1)

    r = client.delete(f"{PREFIX}/templates/{template.id}")

    assert r.status_code == 200
    assert r.json()["data"]["is_active"] is False
    assert template.id in repo.templates
    assert client.get(f"{PREFIX}/templates/{template.id}").status_code == 404
    assert client.post(f"{PREFIX}/attempts", json={"template_id": template.id}).status_code == 404
