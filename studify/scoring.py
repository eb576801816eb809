"""
Scoring for mock-exam attempts.

This is the only place the attempt arithmetic lives. The in-memory routine,
the in-process fallback of the Result Calculator and the manual completion
path all call into it, and the MongoDB aggregation pipeline mirrors it
operation for operation, so every path yields the same counters for the same
set of responses.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

from studify.models import GradedResponse, Question, ResponseDetail, ScoreSummary, SubjectPerformance

DEFAULT_POINTS = 1

# Stripped from both ends of an answer before it is judged; the MongoDB
# pipeline passes the same set to $trim.
TRIM_CHARS = " \t\n\r\x0b\x0c\u00a0"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (``round`` would give 12 for 12.5)."""
    return int(math.floor(value + 0.5))


def percentage_of(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def is_answered(answer: Optional[str]) -> bool:
    return answer is not None and answer.strip(TRIM_CHARS) != ""


def answers_match(answer: Optional[str], correct_answer: Optional[str]) -> bool:
    if not is_answered(answer):
        return False
    return answer.strip(TRIM_CHARS) == (correct_answer or "").strip(TRIM_CHARS)


def question_points(question: Optional[Question]) -> int:
    if question is None:
        return DEFAULT_POINTS
    return question.points


def grade_response(response: ResponseDetail, question: Optional[Question] = None) -> GradedResponse:
    question = question if question is not None else response.question
    correct = question is not None and answers_match(response.user_answer, question.correct_answer)
    return GradedResponse(
        question_id=response.question_id,
        is_correct=correct,
        points_earned=question_points(question) if correct else 0,
    )


def score_attempt(rows: Iterable[ResponseDetail]) -> ScoreSummary:
    """Recompute every counter of an attempt from its response rows.

    ``rows`` must hold exactly one row per question of the attempt, each joined
    with its question; a row without a question counts as unanswerable and
    is worth the default point value.
    """
    summary = ScoreSummary()
    for row in rows:
        graded = grade_response(row)
        summary.total_questions += 1
        summary.max_points += question_points(row.question)
        if is_answered(row.user_answer):
            summary.answered_questions += 1
        if graded.is_correct:
            summary.correct_answers += 1
            summary.total_points += graded.points_earned

    summary.incorrect_answers = summary.answered_questions - summary.correct_answers
    summary.skipped_questions = summary.total_questions - summary.answered_questions
    summary.percentage = percentage_of(summary.total_points, summary.max_points)
    return summary


def grade_all(rows: Iterable[ResponseDetail]) -> list[GradedResponse]:
    return [grade_response(row) for row in rows]


def subject_performance(rows: Iterable[ResponseDetail], default_subject: str = "General") -> list[SubjectPerformance]:
    """Per-subject breakdown, in order of first appearance."""
    by_subject: dict[str, SubjectPerformance] = {}
    for row in rows:
        subject = (row.question.subject_area if row.question else None) or default_subject
        stats = by_subject.setdefault(subject, SubjectPerformance(subject=subject))
        graded = grade_response(row)

        stats.total += 1
        stats.max_points += question_points(row.question)
        if is_answered(row.user_answer):
            stats.answered += 1
            if graded.is_correct:
                stats.correct += 1
                stats.points_earned += graded.points_earned

    for stats in by_subject.values():
        stats.percentage = percentage_of(stats.correct, stats.answered)
    return list(by_subject.values())
