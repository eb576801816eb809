from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from studify.errors import NotFoundError, RoutineUnavailable
from studify.models import (
    Attempt,
    AttemptStatus,
    ExamResponse,
    GradedResponse,
    Question,
    ResponseDetail,
    Template,
)
from studify.scoring import grade_all, score_attempt
from studify.storage.repo import ExamRepository


class InMemoryExamRepository(ExamRepository):
    """Dict-backed store for development and tests.

    ``server_routines`` stands in for the database functions; switch it off to
    force callers onto their in-process fallbacks.
    """

    def __init__(self, server_routines: bool = True) -> None:
        self.server_routines = server_routines
        self.templates: Dict[str, Template] = {}
        self.questions: Dict[str, Question] = {}
        self.attempts: Dict[str, Attempt] = {}
        self.responses: Dict[Tuple[str, str], ExamResponse] = {}
        self.attempt_counters: Dict[Tuple[str, str], int] = {}
        self.routine_calls: List[Tuple[str, str]] = []

    # ===== Templates =====

    async def list_templates(self, category: Optional[str] = None, featured: Optional[bool] = None) -> list[Template]:
        templates = [t for t in self.templates.values() if t.is_active]
        if category:
            templates = [t for t in templates if t.category == category]
        if featured is not None:
            templates = [t for t in templates if t.is_featured == featured]
        templates.sort(key=lambda t: t.created_at, reverse=True)
        templates.sort(key=lambda t: t.is_featured, reverse=True)
        return [t.model_copy() for t in templates]

    async def get_template(self, template_id: str, active_only: bool = True) -> Template:
        template = self.templates.get(template_id)
        if template is None or (active_only and not template.is_active):
            raise NotFoundError("Template not found or inactive")
        return template.model_copy()

    async def update_template(self, template_id: str, owner_id: str, patch: dict[str, Any]) -> Template:
        template = self.templates.get(template_id)
        if template is None or template.created_by != owner_id:
            raise NotFoundError("Template not found")
        updated = template.model_copy(update={**patch, "updated_at": datetime.utcnow()})
        self.templates[template_id] = updated
        return updated.model_copy()

    async def list_questions(self, template_id: str) -> list[Question]:
        questions = [q for q in self.questions.values() if q.template_id == template_id]
        questions.sort(key=lambda q: q.question_number)
        return [q.model_copy() for q in questions]

    async def _insert_template(self, template: Template) -> None:
        self.templates[template.id] = template.model_copy()

    async def _insert_questions(self, questions: list[Question]) -> None:
        for question in questions:
            self.questions[question.id] = question.model_copy()

    async def _delete_template_row(self, template_id: str) -> None:
        for question_id in [q.id for q in self.questions.values() if q.template_id == template_id]:
            del self.questions[question_id]
        self.templates.pop(template_id, None)

    # ===== Attempts =====

    async def latest_attempt_number(self, user_id: str, template_id: str) -> int:
        numbers = [
            a.attempt_number
            for a in self.attempts.values()
            if a.user_id == user_id and a.template_id == template_id
        ]
        return max(numbers, default=0)

    async def _bump_attempt_counter(self, user_id: str, template_id: str, floor: int) -> int:
        key = (user_id, template_id)
        self.attempt_counters[key] = max(self.attempt_counters.get(key, 0), floor) + 1
        return self.attempt_counters[key]

    async def _insert_attempt(self, attempt: Attempt) -> None:
        self.attempts[attempt.id] = attempt.model_copy()

    async def _insert_responses(self, responses: list[ExamResponse]) -> None:
        for response in responses:
            self.responses[(response.attempt_id, response.question_id)] = response.model_copy()

    async def _delete_attempt_row(self, attempt_id: str) -> None:
        self.attempts.pop(attempt_id, None)

    def _owned(self, attempt_id: str, user_id: str) -> Attempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise NotFoundError("Attempt not found or access denied")
        return attempt

    async def get_attempt(self, attempt_id: str, user_id: str) -> Attempt:
        return self._owned(attempt_id, user_id).model_copy()

    async def list_attempts(
        self,
        user_id: str,
        template_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "created_at",
    ) -> list[Attempt]:
        attempts = [a for a in self.attempts.values() if a.user_id == user_id]
        if template_id:
            attempts = [a for a in attempts if a.template_id == template_id]
        if status is not None:
            attempts = [a for a in attempts if a.status == status]

        def sort_key(a: Attempt) -> tuple:
            value = getattr(a, order_by)
            return (value is not None, value or datetime.min)

        attempts.sort(key=sort_key, reverse=True)
        return [a.model_copy() for a in attempts[offset : offset + limit]]

    async def count_attempts(self, user_id: str, status: Optional[AttemptStatus] = None) -> int:
        return len(
            [a for a in self.attempts.values() if a.user_id == user_id and (status is None or a.status == status)]
        )

    async def update_attempt(self, attempt_id: str, user_id: str, patch: dict[str, Any]) -> Attempt:
        attempt = self._owned(attempt_id, user_id)
        updated = attempt.model_copy(update={**patch, "updated_at": datetime.utcnow()})
        self.attempts[attempt_id] = updated
        return updated.model_copy()

    async def delete_attempt(self, attempt_id: str, user_id: str) -> None:
        self._owned(attempt_id, user_id)
        for key in [k for k in self.responses if k[0] == attempt_id]:
            del self.responses[key]
        del self.attempts[attempt_id]

    # ===== Responses =====

    async def upsert_responses(self, attempt_id: str, rows: list[dict[str, Any]]) -> list[ExamResponse]:
        saved: list[ExamResponse] = []
        now = datetime.utcnow()
        for row in rows:
            key = (attempt_id, row["question_id"])
            existing = self.responses.get(key)
            if existing is None:
                response = ExamResponse(attempt_id=attempt_id, **row)
            else:
                response = existing.model_copy(update={**row, "updated_at": now})
            self.responses[key] = response
            saved.append(response.model_copy())
        return saved

    async def list_responses(self, attempt_id: str) -> list[ResponseDetail]:
        details = [
            ResponseDetail(**r.model_dump(), question=self.questions.get(r.question_id))
            for (a_id, _), r in self.responses.items()
            if a_id == attempt_id
        ]
        details.sort(key=lambda d: d.question.question_number if d.question else 0)
        return details

    async def save_grades(self, attempt_id: str, grades: list[GradedResponse]) -> None:
        for grade in grades:
            key = (attempt_id, grade.question_id)
            if key in self.responses:
                self.responses[key] = self.responses[key].model_copy(
                    update={"is_correct": grade.is_correct, "points_earned": grade.points_earned}
                )

    # ===== Server-side routines =====

    async def run_update_attempt_results(self, attempt_id: str) -> None:
        self.routine_calls.append(("update_attempt_results", attempt_id))
        if not self.server_routines:
            raise RoutineUnavailable("function update_attempt_results does not exist")
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise RoutineUnavailable(f"attempt {attempt_id} does not exist")

        rows = await self.list_responses(attempt_id)
        await self.save_grades(attempt_id, grade_all(rows))
        summary = score_attempt(rows)
        self.attempts[attempt_id] = attempt.model_copy(
            update={**summary.attempt_fields(), "updated_at": datetime.utcnow()}
        )

    async def run_complete_attempt(self, attempt_id: str, responses: Optional[list[dict[str, Any]]]) -> dict[str, Any]:
        self.routine_calls.append(("complete_exam_attempt", attempt_id))
        if not self.server_routines:
            raise RoutineUnavailable("function complete_exam_attempt does not exist")
        if attempt_id not in self.attempts:
            raise RoutineUnavailable(f"attempt {attempt_id} does not exist")

        if responses:
            await self.upsert_responses(attempt_id, responses)
        await self.run_update_attempt_results(attempt_id)

        now = datetime.utcnow()
        attempt = self.attempts[attempt_id].model_copy(
            update={"status": AttemptStatus.completed, "completed_at": now, "updated_at": now}
        )
        self.attempts[attempt_id] = attempt
        return {"success": True, "data": attempt.model_dump(mode="json")}
