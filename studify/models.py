from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Fields that must not reach the client before an attempt is completed.
ANSWER_FIELDS = {"correct_answer", "explanation"}


def _new_id() -> str:
    return str(uuid4())


class AttemptStatus(str, Enum):
    started = "started"
    paused = "paused"
    completed = "completed"


class Template(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: Optional[str] = None
    category: str = "general"
    difficulty_level: int = Field(1, ge=1, le=5)
    time_limit_minutes: int = Field(ge=1)
    total_questions: int = Field(0, ge=0)
    passing_score: int = Field(60, ge=0, le=100)
    instructions: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Question(BaseModel):
    id: str = Field(default_factory=_new_id)
    template_id: str
    question_number: int = Field(ge=1)
    question_text: str
    question_type: str = "multiple_choice"  # multiple_choice|true_false|essay|fill_blank
    options: list[str] = Field(default_factory=list)
    correct_answer: str
    explanation: Optional[str] = None
    subject_area: Optional[str] = None
    difficulty_level: int = Field(1, ge=1, le=5)
    points: int = Field(1, ge=0)
    time_estimate_seconds: int = 60
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Attempt(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    template_id: str
    attempt_number: int = Field(ge=1)
    status: AttemptStatus = AttemptStatus.started

    score: int = 0
    percentage: int = 0
    total_questions: int = 0
    answered_questions: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    skipped_questions: int = 0
    total_points: int = 0
    max_points: int = 0

    time_spent_seconds: int = 0
    time_limit_seconds: int = 0
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ExamResponse(BaseModel):
    """One answer row per (attempt, question)."""

    id: str = Field(default_factory=_new_id)
    attempt_id: str
    question_id: str
    user_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    points_earned: int = 0
    time_spent_seconds: int = 0
    is_flagged: bool = False
    answered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ResponseDetail(ExamResponse):
    """A response joined with the question it answers."""

    question: Optional[Question] = None


class GradedResponse(BaseModel):
    question_id: str
    is_correct: bool
    points_earned: int


class ScoreSummary(BaseModel):
    total_questions: int = 0
    answered_questions: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    skipped_questions: int = 0
    total_points: int = 0
    max_points: int = 0
    percentage: int = 0

    def attempt_fields(self) -> dict[str, int]:
        fields = self.model_dump()
        fields["score"] = self.percentage
        return fields


class SubjectPerformance(BaseModel):
    subject: str
    total: int = 0
    correct: int = 0
    answered: int = 0
    percentage: int = 0
    points_earned: int = 0
    max_points: int = 0


# ===== Request DTOs =====

class QuestionInput(BaseModel):
    question_number: Optional[int] = Field(None, ge=1)
    question_text: str
    question_type: str = "multiple_choice"
    options: list[str] = Field(default_factory=list)
    correct_answer: str
    explanation: Optional[str] = None
    subject_area: Optional[str] = None
    difficulty_level: int = Field(1, ge=1, le=5)
    points: int = Field(1, ge=0)
    time_estimate_seconds: int = 60
    tags: list[str] = Field(default_factory=list)


class CreateTemplateRequest(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = "general"
    difficulty_level: int = Field(1, ge=1, le=5)
    time_limit_minutes: int = Field(ge=1)
    passing_score: int = Field(60, ge=0, le=100)
    instructions: Optional[str] = None
    is_featured: bool = False
    questions: list[QuestionInput] = Field(min_length=1)


class UpdateTemplateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    difficulty_level: Optional[int] = Field(None, ge=1, le=5)
    time_limit_minutes: Optional[int] = Field(None, ge=1)
    passing_score: Optional[int] = Field(None, ge=0, le=100)
    instructions: Optional[str] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class StartAttemptRequest(BaseModel):
    template_id: Optional[str] = None


class ResponseInput(BaseModel):
    question_id: str
    user_answer: Optional[str] = Field(
        None, validation_alias=AliasChoices("user_answer", "selected_answer")
    )
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    is_flagged: Optional[bool] = None


class SaveResponseRequest(ResponseInput):
    attempt_id: Optional[str] = None


class UpdateAttemptRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[AttemptStatus] = None
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    score: Optional[int] = Field(None, ge=0)


class CalculateResultsRequest(BaseModel):
    attempt_id: Optional[str] = Field(None, validation_alias=AliasChoices("attempt_id", "attemptId"))


class CompleteAttemptRequest(BaseModel):
    attempt_id: Optional[str] = Field(None, validation_alias=AliasChoices("attemptId", "attempt_id"))
    responses: Optional[list[ResponseInput]] = None


# ===== Response DTOs =====

class StartedAttempt(BaseModel):
    attempt: Attempt
    template: Template
    questions: list[Question]


class AttemptStatistics(BaseModel):
    total_questions: int
    answered_questions: int
    unanswered_questions: int
    correct_answers: int
    incorrect_answers: int
    score_percentage: int
    total_points: int
    max_points: int
    time_spent: int
    time_limit: int
    passed: bool


class AttemptResults(BaseModel):
    attempt: Attempt
    template: Optional[Template] = None
    responses: list[ResponseDetail] = Field(default_factory=list)
    statistics: AttemptStatistics
    subject_performance: list[SubjectPerformance] = Field(
        default_factory=list, serialization_alias="subjectPerformance"
    )


class CompletionSummary(BaseModel):
    attempt_id: str
    status: str
    total_questions: int
    answered_questions: int
    correct_answers: int
    incorrect_answers: int
    skipped_questions: int
    total_points: int
    max_points: int
    percentage: int
    score: int
    completed_at: Optional[datetime] = None
    message: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")
    has_next_page: bool = Field(serialization_alias="hasNextPage")
    has_prev_page: bool = Field(serialization_alias="hasPrevPage")


def dump_question(question: Question, reveal: bool) -> dict[str, Any]:
    return question.model_dump(mode="json", exclude=None if reveal else ANSWER_FIELDS)


def dump_response(detail: ResponseDetail, reveal: bool) -> dict[str, Any]:
    exclude = None if reveal else {"question": ANSWER_FIELDS}
    return detail.model_dump(mode="json", exclude=exclude)
