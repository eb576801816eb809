import asyncio
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from studify.main import create_app
from studify.models import Question, Template
from studify.settings import settings
from studify.storage.inmemory import InMemoryExamRepository
from studify.wiring import get_repo

USER_ID = settings.auth_fallback_user_id
OTHER_USER_ID = "00000000-0000-0000-0000-0000000000ff"
PREFIX = settings.api_prefix


def build_template(
    count: int = 10,
    points: int = 1,
    subjects: Optional[list[str]] = None,
    is_active: bool = True,
    created_by: str = USER_ID,
    passing_score: int = 60,
) -> tuple[Template, list[Question]]:
    template = Template(
        title="Algebra Basics",
        category="math",
        time_limit_minutes=30,
        total_questions=count,
        passing_score=passing_score,
        is_active=is_active,
        created_by=created_by,
    )
    questions = [
        Question(
            template_id=template.id,
            question_number=n,
            question_text=f"Question {n}",
            options=["A", "B", "C", "D"],
            correct_answer="A",
            explanation=f"A is right for {n}",
            subject_area=subjects[(n - 1) % len(subjects)] if subjects else None,
            points=points,
        )
        for n in range(1, count + 1)
    ]
    return template, questions


@pytest.fixture(autouse=True)
def fallback_identity(monkeypatch):
    """Requests without a token act as USER_ID."""
    monkeypatch.setattr(settings, "auth_fallback_enabled", True)


@pytest.fixture
def repo():
    return InMemoryExamRepository()


@pytest.fixture
def seed(repo):
    """Insert a template with questions into the repo; returns (template, questions)."""

    def _seed(**kwargs):
        template, questions = build_template(**kwargs)
        asyncio.run(repo.create_template(template, questions))
        return template, questions

    return _seed


@pytest.fixture
def app(repo):
    app = create_app()
    app.dependency_overrides[get_repo] = lambda: repo
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def start(client):
    """Start an attempt over HTTP and return the response data."""

    def _start(template_id: str, headers: Optional[dict] = None):
        r = client.post(f"{PREFIX}/attempts", json={"template_id": template_id}, headers=headers or {})
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _start
