from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from studify.errors import InternalError
from studify.models import Attempt, AttemptStatus, ExamResponse, GradedResponse, Question, ResponseDetail, Template

logger = logging.getLogger(__name__)


class ExamRepository(ABC):
    """Query interface over the hosted store.

    Every attempt-level read or write takes the owning ``user_id`` so that
    callers cannot reach another user's rows by id alone.
    """

    # ===== Templates =====

    @abstractmethod
    async def list_templates(self, category: Optional[str] = None, featured: Optional[bool] = None) -> list[Template]:
        raise NotImplementedError

    @abstractmethod
    async def get_template(self, template_id: str, active_only: bool = True) -> Template:
        raise NotImplementedError

    @abstractmethod
    async def update_template(self, template_id: str, owner_id: str, patch: dict[str, Any]) -> Template:
        raise NotImplementedError

    @abstractmethod
    async def list_questions(self, template_id: str) -> list[Question]:
        raise NotImplementedError

    async def create_template(self, template: Template, questions: list[Question]) -> Template:
        """Insert a template and its questions as one unit."""
        await self._insert_template(template)
        try:
            await self._insert_questions(questions)
        except Exception as e:
            logger.error(f"Inserting questions for template {template.id} failed, removing template: {e}")
            await self._delete_template_row(template.id)
            raise InternalError("Failed to create template questions", detail=str(e)) from e
        return template

    @abstractmethod
    async def _insert_template(self, template: Template) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _insert_questions(self, questions: list[Question]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _delete_template_row(self, template_id: str) -> None:
        raise NotImplementedError

    # ===== Attempts =====

    @abstractmethod
    async def latest_attempt_number(self, user_id: str, template_id: str) -> int:
        """Highest attempt number among the stored attempts for (user, template); 0 when none."""
        raise NotImplementedError

    async def next_attempt_number(self, user_id: str, template_id: str) -> int:
        """Reserve the next attempt number for (user, template).

        Numbers come from a per-(user, template) counter, so deleting attempts
        never lowers them. The counter is floored at the stored attempts for
        rows written before it existed.
        """
        latest = await self.latest_attempt_number(user_id, template_id)
        return await self._bump_attempt_counter(user_id, template_id, floor=latest)

    @abstractmethod
    async def _bump_attempt_counter(self, user_id: str, template_id: str, floor: int) -> int:
        """Set the counter to max(counter, floor) + 1 and return the new value."""
        raise NotImplementedError

    async def create_attempt(self, attempt: Attempt, responses: list[ExamResponse]) -> Attempt:
        """Insert an attempt with its empty responses as one unit.

        If the responses cannot be written the attempt row is removed again,
        so an attempt never exists without its responses.
        """
        await self._insert_attempt(attempt)
        try:
            await self._insert_responses(responses)
        except Exception as e:
            logger.error(f"Inserting responses for attempt {attempt.id} failed, removing attempt: {e}")
            await self._delete_attempt_row(attempt.id)
            raise InternalError("Failed to create attempt responses", detail=str(e)) from e
        return attempt

    @abstractmethod
    async def _insert_attempt(self, attempt: Attempt) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _insert_responses(self, responses: list[ExamResponse]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _delete_attempt_row(self, attempt_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_attempt(self, attempt_id: str, user_id: str) -> Attempt:
        raise NotImplementedError

    @abstractmethod
    async def list_attempts(
        self,
        user_id: str,
        template_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "created_at",
    ) -> list[Attempt]:
        """Newest first by ``order_by``."""
        raise NotImplementedError

    @abstractmethod
    async def count_attempts(self, user_id: str, status: Optional[AttemptStatus] = None) -> int:
        raise NotImplementedError

    @abstractmethod
    async def update_attempt(self, attempt_id: str, user_id: str, patch: dict[str, Any]) -> Attempt:
        raise NotImplementedError

    @abstractmethod
    async def delete_attempt(self, attempt_id: str, user_id: str) -> None:
        """Delete an attempt, removing its responses first."""
        raise NotImplementedError

    # ===== Responses =====

    @abstractmethod
    async def upsert_responses(self, attempt_id: str, rows: list[dict[str, Any]]) -> list[ExamResponse]:
        """Insert-or-update keyed by (attempt_id, question_id).

        Each row carries ``question_id`` plus only the columns to set.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_responses(self, attempt_id: str) -> list[ResponseDetail]:
        """Responses joined with their questions, ordered by question number."""
        raise NotImplementedError

    @abstractmethod
    async def save_grades(self, attempt_id: str, grades: list[GradedResponse]) -> None:
        raise NotImplementedError

    # ===== Server-side routines =====

    @abstractmethod
    async def run_update_attempt_results(self, attempt_id: str) -> None:
        """Recompute and persist attempt counters inside the store.

        Raises RoutineUnavailable when the store has no such routine or it fails.
        """
        raise NotImplementedError

    @abstractmethod
    async def run_complete_attempt(self, attempt_id: str, responses: Optional[list[dict[str, Any]]]) -> dict[str, Any]:
        """Persist responses, score and complete the attempt inside the store.

        Raises RoutineUnavailable when the store has no such routine or it fails.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None
