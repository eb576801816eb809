"""
Attempt lifecycle: start, record answers, complete, and the history views.

Scoring itself is delegated to the ResultCalculator; this module only decides
when it runs and guards the status transitions around it.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Optional

from studify.errors import InternalError, NotFoundError, RoutineUnavailable, StudifyError, ValidationError
from studify.models import (
    Attempt,
    AttemptStatus,
    CompletionSummary,
    ExamResponse,
    Pagination,
    ResponseInput,
    StartedAttempt,
    UpdateAttemptRequest,
    dump_response,
)
from studify.observability import attempt_span
from studify.scoring import is_answered
from studify.services.results import FALLBACK, ROUTINE, ResultCalculator
from studify.storage.repo import ExamRepository

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 50

# Allowed status changes; nothing leaves "completed".
TRANSITIONS = {
    AttemptStatus.started: {AttemptStatus.paused, AttemptStatus.completed},
    AttemptStatus.paused: {AttemptStatus.started, AttemptStatus.completed},
    AttemptStatus.completed: set(),
}


class AttemptService:
    def __init__(self, repo: ExamRepository, calculator: ResultCalculator) -> None:
        self.repo = repo
        self.calculator = calculator

    # ===== Attempt Starter =====

    async def start_attempt(self, template_id: str, user_id: str) -> StartedAttempt:
        template = await self.repo.get_template(template_id)
        questions = await self.repo.list_questions(template_id)
        if not questions:
            raise NotFoundError("No questions found for this template")

        try:
            attempt_number = await self.repo.next_attempt_number(user_id, template_id)
            attempt = Attempt(
                user_id=user_id,
                template_id=template_id,
                attempt_number=attempt_number,
                status=AttemptStatus.started,
                total_questions=template.total_questions,
                time_limit_seconds=template.time_limit_minutes * 60,
            )
            responses = [ExamResponse(attempt_id=attempt.id, question_id=q.id) for q in questions]
            attempt = await self.repo.create_attempt(attempt, responses)
        except StudifyError:
            raise
        except Exception as e:
            logger.error(f"Starting attempt on template {template_id} failed: {str(e)}")
            raise InternalError("Failed to create exam attempt", detail=str(e)) from e

        logger.info(f"User {user_id} started attempt #{attempt.attempt_number} on template {template_id}")
        return StartedAttempt(attempt=attempt, template=template, questions=questions)

    async def list_attempts(
        self,
        user_id: str,
        template_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Attempt]:
        return await self.repo.list_attempts(user_id, template_id=template_id, status=status, limit=limit, offset=offset)

    async def get_attempt_detail(self, attempt_id: str, user_id: str) -> dict[str, Any]:
        """Attempt with its responses; answers stay hidden until completion."""
        attempt = await self.repo.get_attempt(attempt_id, user_id)
        rows = await self.repo.list_responses(attempt_id)
        reveal = attempt.status == AttemptStatus.completed
        return {
            "attempt": attempt.model_dump(mode="json"),
            "responses": [dump_response(row, reveal) for row in rows],
        }

    # ===== Response Recorder =====

    async def _response_rows(self, attempt: Attempt, responses: list[ResponseInput]) -> list[dict[str, Any]]:
        """Validate answers against the attempt's template and shape them for upsert.

        A question repeated within one batch keeps only its last answer.
        """
        question_ids = {q.id for q in await self.repo.list_questions(attempt.template_id)}
        now = datetime.utcnow()
        rows: dict[str, dict[str, Any]] = {}
        for response in responses:
            if response.question_id not in question_ids:
                raise NotFoundError("Question not found")
            row: dict[str, Any] = {
                "question_id": response.question_id,
                "user_answer": response.user_answer,
                "answered_at": now if is_answered(response.user_answer) else None,
                # Graded from scratch by the calculator.
                "is_correct": None,
                "points_earned": 0,
            }
            if response.time_spent_seconds is not None:
                row["time_spent_seconds"] = response.time_spent_seconds
            if response.is_flagged is not None:
                row["is_flagged"] = response.is_flagged
            rows[response.question_id] = row
        return list(rows.values())

    async def record_responses(
        self, attempt_id: str, user_id: str, responses: list[ResponseInput]
    ) -> list[ExamResponse]:
        attempt = await self.repo.get_attempt(attempt_id, user_id)
        if attempt.status == AttemptStatus.completed:
            raise ValidationError("Attempt is already completed")
        rows = await self._response_rows(attempt, responses)
        return await self.repo.upsert_responses(attempt_id, rows)

    async def record_response(self, attempt_id: str, user_id: str, response: ResponseInput) -> ExamResponse:
        saved = await self.record_responses(attempt_id, user_id, [response])
        return saved[0]

    # ===== Completion Finalizer =====

    async def complete_attempt(
        self, attempt_id: str, user_id: str, responses: Optional[list[ResponseInput]] = None
    ) -> CompletionSummary:
        attempt = await self.repo.get_attempt(attempt_id, user_id)
        if attempt.status == AttemptStatus.completed:
            return self.summary(attempt, "already_completed", "Exam already completed")

        rows = await self._response_rows(attempt, responses) if responses else None

        with attempt_span("attempts.complete", attempt_id) as span:
            try:
                attempt, path = await self._complete(attempt_id, user_id, rows)
            except StudifyError:
                raise
            except Exception as e:
                logger.error(f"Completing attempt {attempt_id} failed: {str(e)}")
                raise InternalError("Failed to complete exam", detail=str(e)) from e
            span.set_attribute("studify.scoring_path", path)

        logger.info(f"Attempt {attempt_id} completed via {path}: {attempt.percentage}%")
        return self.summary(attempt, "completed", "Exam completed successfully")

    async def _complete(
        self, attempt_id: str, user_id: str, rows: Optional[list[dict[str, Any]]]
    ) -> tuple[Attempt, str]:
        if self.calculator.use_server_routines:
            try:
                await self.repo.run_complete_attempt(attempt_id, rows)
                return await self.repo.get_attempt(attempt_id, user_id), ROUTINE
            except RoutineUnavailable as e:
                logger.warning(f"complete_exam_attempt unavailable for {attempt_id}, completing manually: {e}")

        if rows:
            await self.repo.upsert_responses(attempt_id, rows)
        await self.calculator.recalculate_manually(attempt_id, user_id)
        attempt = await self.repo.update_attempt(
            attempt_id,
            user_id,
            {"status": AttemptStatus.completed, "completed_at": datetime.utcnow()},
        )
        return attempt, FALLBACK

    @staticmethod
    def summary(attempt: Attempt, status: str, message: str) -> CompletionSummary:
        return CompletionSummary(
            attempt_id=attempt.id,
            status=status,
            total_questions=attempt.total_questions,
            answered_questions=attempt.answered_questions,
            correct_answers=attempt.correct_answers,
            incorrect_answers=attempt.incorrect_answers,
            skipped_questions=attempt.skipped_questions,
            total_points=attempt.total_points,
            max_points=attempt.max_points,
            percentage=attempt.percentage,
            score=attempt.score,
            completed_at=attempt.completed_at,
            message=message,
        )

    async def update_attempt(self, attempt_id: str, user_id: str, req: UpdateAttemptRequest) -> Attempt:
        """PATCH an attempt. Completion goes through complete_attempt so it is always scored."""
        attempt = await self.repo.get_attempt(attempt_id, user_id)
        patch = req.model_dump(exclude_none=True, exclude={"status"})
        target = req.status

        if target is None and not patch:
            raise ValidationError("No fields to update")

        if attempt.status == AttemptStatus.completed:
            if target == AttemptStatus.completed and not patch:
                return attempt
            raise ValidationError("Attempt is already completed")

        if target is not None and target != attempt.status and target not in TRANSITIONS[attempt.status]:
            raise ValidationError(f"Cannot change status from {attempt.status.value} to {target.value}")

        if target == AttemptStatus.paused and attempt.status != AttemptStatus.paused:
            patch.update({"status": AttemptStatus.paused, "paused_at": datetime.utcnow()})
        elif target == AttemptStatus.started:
            patch["status"] = AttemptStatus.started

        if patch:
            attempt = await self.repo.update_attempt(attempt_id, user_id, patch)

        if target == AttemptStatus.completed:
            await self.complete_attempt(attempt_id, user_id)
            attempt = await self.repo.get_attempt(attempt_id, user_id)
        return attempt

    # ===== History =====

    async def list_history(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[dict[str, Any]], Pagination]:
        if page < 1:
            raise ValidationError("Page must be at least 1")
        if limit < 1:
            raise ValidationError("Limit must be at least 1")
        limit = min(limit, MAX_HISTORY_LIMIT)

        total = await self.repo.count_attempts(user_id, status=AttemptStatus.completed)
        attempts = await self.repo.list_attempts(
            user_id,
            status=AttemptStatus.completed,
            limit=limit,
            offset=(page - 1) * limit,
            order_by="completed_at",
        )

        titles: dict[str, Optional[dict[str, Any]]] = {}
        items = []
        for attempt in attempts:
            if attempt.template_id not in titles:
                titles[attempt.template_id] = await self._template_brief(attempt.template_id)
            items.append({**attempt.model_dump(mode="json"), "template": titles[attempt.template_id]})

        total_pages = math.ceil(total / limit) if total else 0
        pagination = Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )
        return items, pagination

    async def _template_brief(self, template_id: str) -> Optional[dict[str, Any]]:
        try:
            template = await self.repo.get_template(template_id, active_only=False)
        except NotFoundError:
            return None
        return {
            "id": template.id,
            "title": template.title,
            "category": template.category,
            "difficulty_level": template.difficulty_level,
        }

    async def _completed_attempt(self, attempt_id: str, user_id: str) -> Attempt:
        try:
            attempt = await self.repo.get_attempt(attempt_id, user_id)
        except NotFoundError:
            attempt = None
        if attempt is None or attempt.status != AttemptStatus.completed:
            raise NotFoundError("Attempt not found or not completed")
        return attempt

    async def get_history_detail(self, attempt_id: str, user_id: str) -> dict[str, Any]:
        attempt = await self._completed_attempt(attempt_id, user_id)
        rows = await self.repo.list_responses(attempt_id)
        return {
            "attempt": attempt.model_dump(mode="json"),
            "template": await self._template_brief(attempt.template_id),
            "responses": [dump_response(row, reveal=True) for row in rows],
            "performance_by_subject": [p.model_dump() for p in self.calculator.breakdown(rows)],
        }

    async def delete_history_attempt(self, attempt_id: str, user_id: str) -> None:
        await self._completed_attempt(attempt_id, user_id)
        await self.repo.delete_attempt(attempt_id, user_id)
        logger.info(f"User {user_id} deleted attempt {attempt_id} from history")
