"""
Result Calculator.

Recomputes an attempt's counters from its response rows. The database-side
routine is tried first; when it is missing or fails, the same computation is
done in-process with studify.scoring and written back explicitly.
"""

from __future__ import annotations

import logging
from typing import Optional

from studify.errors import InternalError, RoutineUnavailable, StudifyError
from studify.models import (
    Attempt,
    AttemptResults,
    AttemptStatistics,
    ResponseDetail,
    ScoreSummary,
    SubjectPerformance,
    Template,
)
from studify.observability import attempt_span
from studify.scoring import grade_all, score_attempt, subject_performance
from studify.storage.repo import ExamRepository

logger = logging.getLogger(__name__)

ROUTINE = "routine"
FALLBACK = "fallback"


class ResultCalculator:
    def __init__(
        self,
        repo: ExamRepository,
        use_server_routines: bool = True,
        default_subject: str = "General",
        default_passing_score: int = 60,
    ) -> None:
        self.repo = repo
        self.use_server_routines = use_server_routines
        self.default_subject = default_subject
        self.default_passing_score = default_passing_score

    async def recalculate(self, attempt_id: str, user_id: str) -> str:
        """Refresh the stored counters; returns which path produced them."""
        with attempt_span("results.recalculate", attempt_id) as span:
            if self.use_server_routines:
                try:
                    await self.repo.run_update_attempt_results(attempt_id)
                    span.set_attribute("studify.scoring_path", ROUTINE)
                    return ROUTINE
                except RoutineUnavailable as e:
                    logger.warning(f"update_attempt_results unavailable for {attempt_id}, computing in-process: {e}")

            await self.recalculate_manually(attempt_id, user_id)
            span.set_attribute("studify.scoring_path", FALLBACK)
            return FALLBACK

    async def recalculate_manually(self, attempt_id: str, user_id: str) -> ScoreSummary:
        rows = await self.repo.list_responses(attempt_id)
        summary = score_attempt(rows)
        await self.repo.save_grades(attempt_id, grade_all(rows))
        await self.repo.update_attempt(attempt_id, user_id, summary.attempt_fields())
        logger.info(
            f"Scored attempt {attempt_id} in-process: "
            f"{summary.correct_answers}/{summary.total_questions} correct, {summary.percentage}%"
        )
        return summary

    async def calculate(self, attempt_id: str, user_id: str) -> AttemptResults:
        """POST /calculate-results: recompute, then report."""
        await self.repo.get_attempt(attempt_id, user_id)
        try:
            await self.recalculate(attempt_id, user_id)
        except StudifyError:
            raise
        except Exception as e:
            logger.error(f"Calculating results for {attempt_id} failed: {str(e)}")
            raise InternalError("Failed to calculate results", detail=str(e)) from e
        return await self.build_results(attempt_id, user_id)

    async def build_results(self, attempt_id: str, user_id: str) -> AttemptResults:
        """Report the stored counters without recomputing them."""
        attempt = await self.repo.get_attempt(attempt_id, user_id)
        try:
            template: Optional[Template] = await self.repo.get_template(attempt.template_id, active_only=False)
        except StudifyError:
            template = None
        rows = await self.repo.list_responses(attempt_id)

        return AttemptResults(
            attempt=attempt,
            template=template,
            responses=rows,
            statistics=self.statistics(attempt, template),
            subject_performance=self.breakdown(rows),
        )

    def breakdown(self, rows: list[ResponseDetail]) -> list[SubjectPerformance]:
        return subject_performance(rows, self.default_subject)

    def statistics(self, attempt: Attempt, template: Optional[Template]) -> AttemptStatistics:
        passing_score = template.passing_score if template else self.default_passing_score
        time_limit = template.time_limit_minutes * 60 if template else attempt.time_limit_seconds
        return AttemptStatistics(
            total_questions=attempt.total_questions,
            answered_questions=attempt.answered_questions,
            unanswered_questions=attempt.skipped_questions,
            correct_answers=attempt.correct_answers,
            incorrect_answers=attempt.incorrect_answers,
            score_percentage=attempt.percentage,
            total_points=attempt.total_points,
            max_points=attempt.max_points,
            time_spent=attempt.time_spent_seconds,
            time_limit=time_limit,
            passed=attempt.percentage >= passing_score,
        )
