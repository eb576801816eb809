"""
Supabase-backed store.

Tables live in the hosted Postgres and are reached through PostgREST via the
supabase client. The two scoring routines are Postgres functions called with
``rpc``. The client is synchronous, so every ``execute()`` runs in FastAPI's
threadpool.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from postgrest.exceptions import APIError
from supabase import Client, create_client

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
from studify.storage.repo import ExamRepository

logger = logging.getLogger(__name__)

TEMPLATES = "mock_exam_templates"
QUESTIONS = "mock_exam_questions"
ATTEMPTS = "mock_exam_attempts"
RESPONSES = "mock_exam_responses"
COUNTERS = "mock_exam_attempt_counters"


def _jsonable(row: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in row.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        out[key] = value
    return out


class SupabaseExamRepository(ExamRepository):
    def __init__(self, url: Optional[str], key: Optional[str], client: Optional[Client] = None) -> None:
        if client is None:
            if not url or not key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
            client = create_client(url, key)
        self.client = client

    async def _execute(self, query: Any) -> Any:
        return await run_in_threadpool(query.execute)

    # ===== Templates =====

    async def list_templates(self, category: Optional[str] = None, featured: Optional[bool] = None) -> list[Template]:
        query = (
            self.client.table(TEMPLATES)
            .select("*")
            .eq("is_active", True)
            .order("is_featured", desc=True)
            .order("created_at", desc=True)
        )
        if category:
            query = query.eq("category", category)
        if featured is not None:
            query = query.eq("is_featured", featured)
        r = await self._execute(query)
        return [Template.model_validate(row) for row in r.data or []]

    async def get_template(self, template_id: str, active_only: bool = True) -> Template:
        query = self.client.table(TEMPLATES).select("*").eq("id", template_id)
        if active_only:
            query = query.eq("is_active", True)
        r = await self._execute(query.limit(1))
        if not r.data:
            raise NotFoundError("Template not found or inactive")
        return Template.model_validate(r.data[0])

    async def update_template(self, template_id: str, owner_id: str, patch: dict[str, Any]) -> Template:
        query = (
            self.client.table(TEMPLATES)
            .update(_jsonable({**patch, "updated_at": datetime.utcnow()}))
            .eq("id", template_id)
            .eq("created_by", owner_id)
        )
        r = await self._execute(query)
        if not r.data:
            raise NotFoundError("Template not found")
        return Template.model_validate(r.data[0])

    async def list_questions(self, template_id: str) -> list[Question]:
        query = self.client.table(QUESTIONS).select("*").eq("template_id", template_id).order("question_number")
        r = await self._execute(query)
        return [Question.model_validate(row) for row in r.data or []]

    async def _insert_template(self, template: Template) -> None:
        await self._execute(self.client.table(TEMPLATES).insert(template.model_dump(mode="json")))

    async def _insert_questions(self, questions: list[Question]) -> None:
        if questions:
            await self._execute(self.client.table(QUESTIONS).insert([q.model_dump(mode="json") for q in questions]))

    async def _delete_template_row(self, template_id: str) -> None:
        await self._execute(self.client.table(QUESTIONS).delete().eq("template_id", template_id))
        await self._execute(self.client.table(TEMPLATES).delete().eq("id", template_id))

    # ===== Attempts =====

    async def latest_attempt_number(self, user_id: str, template_id: str) -> int:
        query = (
            self.client.table(ATTEMPTS)
            .select("attempt_number")
            .eq("user_id", user_id)
            .eq("template_id", template_id)
            .order("attempt_number", desc=True)
            .limit(1)
        )
        r = await self._execute(query)
        return int(r.data[0]["attempt_number"]) if r.data else 0

    async def _bump_attempt_counter(self, user_id: str, template_id: str, floor: int) -> int:
        query = (
            self.client.table(COUNTERS)
            .select("last_number")
            .eq("user_id", user_id)
            .eq("template_id", template_id)
            .limit(1)
        )
        r = await self._execute(query)
        current = int(r.data[0]["last_number"]) if r.data else 0
        number = max(current, floor) + 1
        row = {"user_id": user_id, "template_id": template_id, "last_number": number}
        await self._execute(self.client.table(COUNTERS).upsert(row, on_conflict="user_id,template_id"))
        return number

    async def _insert_attempt(self, attempt: Attempt) -> None:
        await self._execute(self.client.table(ATTEMPTS).insert(attempt.model_dump(mode="json")))

    async def _insert_responses(self, responses: list[ExamResponse]) -> None:
        if responses:
            await self._execute(self.client.table(RESPONSES).insert([r.model_dump(mode="json") for r in responses]))

    async def _delete_attempt_row(self, attempt_id: str) -> None:
        await self._execute(self.client.table(RESPONSES).delete().eq("attempt_id", attempt_id))
        await self._execute(self.client.table(ATTEMPTS).delete().eq("id", attempt_id))

    async def get_attempt(self, attempt_id: str, user_id: str) -> Attempt:
        query = self.client.table(ATTEMPTS).select("*").eq("id", attempt_id).eq("user_id", user_id).limit(1)
        r = await self._execute(query)
        if not r.data:
            raise NotFoundError("Attempt not found or access denied")
        return Attempt.model_validate(r.data[0])

    async def list_attempts(
        self,
        user_id: str,
        template_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "created_at",
    ) -> list[Attempt]:
        query = self.client.table(ATTEMPTS).select("*").eq("user_id", user_id)
        if template_id:
            query = query.eq("template_id", template_id)
        if status is not None:
            query = query.eq("status", status.value)
        query = query.order(order_by, desc=True).range(offset, offset + limit - 1)
        r = await self._execute(query)
        return [Attempt.model_validate(row) for row in r.data or []]

    async def count_attempts(self, user_id: str, status: Optional[AttemptStatus] = None) -> int:
        query = self.client.table(ATTEMPTS).select("id", count="exact").eq("user_id", user_id)
        if status is not None:
            query = query.eq("status", status.value)
        r = await self._execute(query.limit(0))
        return r.count or 0

    async def update_attempt(self, attempt_id: str, user_id: str, patch: dict[str, Any]) -> Attempt:
        query = (
            self.client.table(ATTEMPTS)
            .update(_jsonable({**patch, "updated_at": datetime.utcnow()}))
            .eq("id", attempt_id)
            .eq("user_id", user_id)
        )
        r = await self._execute(query)
        if not r.data:
            raise NotFoundError("Attempt not found or access denied")
        return Attempt.model_validate(r.data[0])

    async def delete_attempt(self, attempt_id: str, user_id: str) -> None:
        await self.get_attempt(attempt_id, user_id)
        # Responses reference the attempt, so they go first.
        await self._execute(self.client.table(RESPONSES).delete().eq("attempt_id", attempt_id))
        await self._execute(self.client.table(ATTEMPTS).delete().eq("id", attempt_id).eq("user_id", user_id))

    # ===== Responses =====

    async def upsert_responses(self, attempt_id: str, rows: list[dict[str, Any]]) -> list[ExamResponse]:
        if not rows:
            return []
        now = datetime.utcnow()
        # A bulk upsert must carry the same columns in every row.
        batches: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for row in rows:
            batches.setdefault(tuple(sorted(row)), []).append(
                _jsonable({**row, "attempt_id": attempt_id, "updated_at": now})
            )

        saved: dict[str, ExamResponse] = {}
        for payload in batches.values():
            r = await self._execute(
                self.client.table(RESPONSES).upsert(payload, on_conflict="attempt_id,question_id")
            )
            for row in r.data or []:
                saved[row["question_id"]] = ExamResponse.model_validate(row)
        return [saved[row["question_id"]] for row in rows if row["question_id"] in saved]

    async def list_responses(self, attempt_id: str) -> list[ResponseDetail]:
        query = self.client.table(RESPONSES).select(f"*, {QUESTIONS}(*)").eq("attempt_id", attempt_id)
        r = await self._execute(query)
        details = []
        for row in r.data or []:
            row = dict(row)
            row["question"] = row.pop(QUESTIONS, None)
            details.append(ResponseDetail.model_validate(row))
        details.sort(key=lambda d: d.question.question_number if d.question else 0)
        return details

    async def save_grades(self, attempt_id: str, grades: list[GradedResponse]) -> None:
        if not grades:
            return
        payload = [
            {
                "attempt_id": attempt_id,
                "question_id": g.question_id,
                "is_correct": g.is_correct,
                "points_earned": g.points_earned,
            }
            for g in grades
        ]
        await self._execute(self.client.table(RESPONSES).upsert(payload, on_conflict="attempt_id,question_id"))

    # ===== Server-side routines =====

    async def _rpc(self, name: str, params: dict[str, Any]) -> Any:
        try:
            r = await self._execute(self.client.rpc(name, params))
        except (APIError, httpx.HTTPError) as e:
            raise RoutineUnavailable(f"{name} failed: {e}") from e
        return r.data

    async def run_update_attempt_results(self, attempt_id: str) -> None:
        result = await self._rpc("update_attempt_results", {"attempt_uuid": attempt_id})
        logger.debug(f"update_attempt_results({attempt_id}) -> {result}")

    async def run_complete_attempt(self, attempt_id: str, responses: Optional[list[dict[str, Any]]]) -> dict[str, Any]:
        params = {
            "attempt_uuid": attempt_id,
            "user_responses": [_jsonable(r) for r in responses] if responses else None,
        }
        result = await self._rpc("complete_exam_attempt", params)
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else result
            raise RoutineUnavailable(f"complete_exam_attempt returned an error: {error}")
        return result
