from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument, UpdateOne
from pymongo.errors import PyMongoError

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
from studify.scoring import DEFAULT_POINTS, TRIM_CHARS
from studify.storage.repo import ExamRepository

NO_ID = {"_id": 0}


def _trimmed(expr: str) -> dict[str, Any]:
    return {"$trim": {"input": {"$ifNull": [expr, ""]}, "chars": TRIM_CHARS}}


def _join_questions(attempt_id: str) -> list[dict[str, Any]]:
    return [
        {"$match": {"attempt_id": attempt_id}},
        {
            "$lookup": {
                "from": "mock_exam_questions",
                "localField": "question_id",
                "foreignField": "id",
                "as": "question",
            }
        },
        {"$unwind": {"path": "$question", "preserveNullAndEmptyArrays": True}},
    ]


def grading_pipeline(attempt_id: str) -> list[dict[str, Any]]:
    """Grade every response of an attempt in place (is_correct, points_earned)."""
    return _join_questions(attempt_id) + [
        {"$set": {"_answer": _trimmed("$user_answer"), "_points": {"$ifNull": ["$question.points", DEFAULT_POINTS]}}},
        {
            "$set": {
                "is_correct": {
                    "$and": [
                        {"$ne": ["$_answer", ""]},
                        {"$ne": [{"$type": "$question"}, "missing"]},
                        {"$eq": ["$_answer", _trimmed("$question.correct_answer")]},
                    ]
                }
            }
        },
        {"$set": {"points_earned": {"$cond": ["$is_correct", "$_points", 0]}}},
        {"$project": {"_id": 1, "is_correct": 1, "points_earned": 1}},
        {"$merge": {"into": "mock_exam_responses", "on": "_id", "whenMatched": "merge", "whenNotMatched": "discard"}},
    ]


def totals_pipeline(attempt_id: str) -> list[dict[str, Any]]:
    """Attempt counters from graded responses; percentage is floor(x + 0.5) like studify.scoring."""
    answered = {"$cond": [{"$ne": [_trimmed("$user_answer"), ""]}, 1, 0]}
    return _join_questions(attempt_id) + [
        {
            "$group": {
                "_id": None,
                "total_questions": {"$sum": 1},
                "answered_questions": {"$sum": answered},
                "correct_answers": {"$sum": {"$cond": ["$is_correct", 1, 0]}},
                "total_points": {"$sum": "$points_earned"},
                "max_points": {"$sum": {"$ifNull": ["$question.points", DEFAULT_POINTS]}},
            }
        },
        {
            "$set": {
                "incorrect_answers": {"$subtract": ["$answered_questions", "$correct_answers"]},
                "skipped_questions": {"$subtract": ["$total_questions", "$answered_questions"]},
                "percentage": {
                    "$cond": [
                        {"$gt": ["$max_points", 0]},
                        {
                            "$floor": {
                                "$add": [{"$multiply": [{"$divide": ["$total_points", "$max_points"]}, 100]}, 0.5]
                            }
                        },
                        0,
                    ]
                },
            }
        },
        {"$project": {"_id": 0}},
    ]


class MongoExamRepository(ExamRepository):
    def __init__(self, mongo_uri: str, db_name: str) -> None:
        self.client = AsyncIOMotorClient(mongo_uri)
        self.db = self.client[db_name]
        self.templates = self.db["mock_exam_templates"]
        self.questions = self.db["mock_exam_questions"]
        self.attempts = self.db["mock_exam_attempts"]
        self.responses = self.db["mock_exam_responses"]
        self.counters = self.db["mock_exam_attempt_counters"]

    async def ensure_indexes(self) -> None:
        await self.responses.create_index([("attempt_id", ASCENDING), ("question_id", ASCENDING)], unique=True)
        await self.attempts.create_index([("user_id", ASCENDING), ("template_id", ASCENDING), ("attempt_number", DESCENDING)])
        await self.questions.create_index([("template_id", ASCENDING), ("question_number", ASCENDING)], unique=True)
        await self.counters.create_index([("user_id", ASCENDING), ("template_id", ASCENDING)], unique=True)

    # ===== Templates =====

    async def list_templates(self, category: Optional[str] = None, featured: Optional[bool] = None) -> list[Template]:
        query: dict[str, Any] = {"is_active": True}
        if category:
            query["category"] = category
        if featured is not None:
            query["is_featured"] = featured
        cursor = self.templates.find(query, NO_ID).sort([("is_featured", DESCENDING), ("created_at", DESCENDING)])
        docs = await cursor.to_list(length=10_000)
        return [Template.model_validate(d) for d in docs]

    async def get_template(self, template_id: str, active_only: bool = True) -> Template:
        query: dict[str, Any] = {"id": template_id}
        if active_only:
            query["is_active"] = True
        doc = await self.templates.find_one(query, NO_ID)
        if not doc:
            raise NotFoundError("Template not found or inactive")
        return Template.model_validate(doc)

    async def update_template(self, template_id: str, owner_id: str, patch: dict[str, Any]) -> Template:
        result = await self.templates.update_one(
            {"id": template_id, "created_by": owner_id},
            {"$set": {**patch, "updated_at": datetime.utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("Template not found")
        return await self.get_template(template_id, active_only=False)

    async def list_questions(self, template_id: str) -> list[Question]:
        cursor = self.questions.find({"template_id": template_id}, NO_ID).sort("question_number", ASCENDING)
        docs = await cursor.to_list(length=10_000)
        return [Question.model_validate(d) for d in docs]

    async def _insert_template(self, template: Template) -> None:
        await self.templates.insert_one(template.model_dump())

    async def _insert_questions(self, questions: list[Question]) -> None:
        if questions:
            await self.questions.insert_many([q.model_dump() for q in questions])

    async def _delete_template_row(self, template_id: str) -> None:
        await self.questions.delete_many({"template_id": template_id})
        await self.templates.delete_one({"id": template_id})

    # ===== Attempts =====

    async def latest_attempt_number(self, user_id: str, template_id: str) -> int:
        doc = await self.attempts.find_one(
            {"user_id": user_id, "template_id": template_id},
            {"attempt_number": 1, "_id": 0},
            sort=[("attempt_number", DESCENDING)],
        )
        return int(doc["attempt_number"]) if doc else 0

    async def _bump_attempt_counter(self, user_id: str, template_id: str, floor: int) -> int:
        # Single-document pipeline update, atomic per (user, template).
        doc = await self.counters.find_one_and_update(
            {"user_id": user_id, "template_id": template_id},
            [{"$set": {"seq": {"$add": [{"$max": [{"$ifNull": ["$seq", 0]}, floor]}, 1]}}}],
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    async def _insert_attempt(self, attempt: Attempt) -> None:
        doc = attempt.model_dump()
        doc["status"] = attempt.status.value
        await self.attempts.insert_one(doc)

    async def _insert_responses(self, responses: list[ExamResponse]) -> None:
        if responses:
            await self.responses.insert_many([r.model_dump() for r in responses])

    async def _delete_attempt_row(self, attempt_id: str) -> None:
        await self.responses.delete_many({"attempt_id": attempt_id})
        await self.attempts.delete_one({"id": attempt_id})

    async def get_attempt(self, attempt_id: str, user_id: str) -> Attempt:
        doc = await self.attempts.find_one({"id": attempt_id, "user_id": user_id}, NO_ID)
        if not doc:
            raise NotFoundError("Attempt not found or access denied")
        return Attempt.model_validate(doc)

    async def list_attempts(
        self,
        user_id: str,
        template_id: Optional[str] = None,
        status: Optional[AttemptStatus] = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "created_at",
    ) -> list[Attempt]:
        query: dict[str, Any] = {"user_id": user_id}
        if template_id:
            query["template_id"] = template_id
        if status is not None:
            query["status"] = status.value
        cursor = self.attempts.find(query, NO_ID).sort(order_by, DESCENDING).skip(offset).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [Attempt.model_validate(d) for d in docs]

    async def count_attempts(self, user_id: str, status: Optional[AttemptStatus] = None) -> int:
        query: dict[str, Any] = {"user_id": user_id}
        if status is not None:
            query["status"] = status.value
        return await self.attempts.count_documents(query)

    async def update_attempt(self, attempt_id: str, user_id: str, patch: dict[str, Any]) -> Attempt:
        update = {k: (v.value if isinstance(v, AttemptStatus) else v) for k, v in patch.items()}
        update["updated_at"] = datetime.utcnow()
        result = await self.attempts.update_one({"id": attempt_id, "user_id": user_id}, {"$set": update})
        if result.matched_count == 0:
            raise NotFoundError("Attempt not found or access denied")
        return await self.get_attempt(attempt_id, user_id)

    async def delete_attempt(self, attempt_id: str, user_id: str) -> None:
        await self.get_attempt(attempt_id, user_id)
        await self.responses.delete_many({"attempt_id": attempt_id})
        await self.attempts.delete_one({"id": attempt_id, "user_id": user_id})

    # ===== Responses =====

    async def upsert_responses(self, attempt_id: str, rows: list[dict[str, Any]]) -> list[ExamResponse]:
        if not rows:
            return []
        now = datetime.utcnow()
        ops = []
        for row in rows:
            defaults = ExamResponse(attempt_id=attempt_id, question_id=row["question_id"]).model_dump()
            for key in row:
                defaults.pop(key, None)
            defaults.pop("updated_at", None)
            ops.append(
                UpdateOne(
                    {"attempt_id": attempt_id, "question_id": row["question_id"]},
                    {"$set": {**row, "updated_at": now}, "$setOnInsert": defaults},
                    upsert=True,
                )
            )
        await self.responses.bulk_write(ops, ordered=True)

        ids = [row["question_id"] for row in rows]
        cursor = self.responses.find({"attempt_id": attempt_id, "question_id": {"$in": ids}}, NO_ID)
        docs = {d["question_id"]: d for d in await cursor.to_list(length=len(ids))}
        return [ExamResponse.model_validate(docs[qid]) for qid in ids if qid in docs]

    async def list_responses(self, attempt_id: str) -> list[ResponseDetail]:
        pipeline = _join_questions(attempt_id) + [
            {"$project": {"_id": 0, "question._id": 0}},
            {"$sort": {"question.question_number": ASCENDING}},
        ]
        docs = await self.responses.aggregate(pipeline).to_list(length=None)
        return [ResponseDetail.model_validate(d) for d in docs]

    async def save_grades(self, attempt_id: str, grades: list[GradedResponse]) -> None:
        if not grades:
            return
        ops = [
            UpdateOne(
                {"attempt_id": attempt_id, "question_id": g.question_id},
                {"$set": {"is_correct": g.is_correct, "points_earned": g.points_earned}},
            )
            for g in grades
        ]
        await self.responses.bulk_write(ops, ordered=False)

    # ===== Server-side routines =====

    async def run_update_attempt_results(self, attempt_id: str) -> None:
        try:
            await self.responses.aggregate(grading_pipeline(attempt_id)).to_list(length=None)
            totals = await self.responses.aggregate(totals_pipeline(attempt_id)).to_list(length=1)
        except PyMongoError as e:
            raise RoutineUnavailable(f"aggregation failed: {e}") from e

        counters = {
            "total_questions": 0,
            "answered_questions": 0,
            "correct_answers": 0,
            "incorrect_answers": 0,
            "skipped_questions": 0,
            "total_points": 0,
            "max_points": 0,
            "percentage": 0,
        }
        if totals:
            counters.update({k: int(v) for k, v in totals[0].items() if k in counters})
        counters["score"] = counters["percentage"]
        counters["updated_at"] = datetime.utcnow()

        result = await self.attempts.update_one({"id": attempt_id}, {"$set": counters})
        if result.matched_count == 0:
            raise RoutineUnavailable(f"attempt {attempt_id} does not exist")

    async def run_complete_attempt(self, attempt_id: str, responses: Optional[list[dict[str, Any]]]) -> dict[str, Any]:
        raise RoutineUnavailable("complete_exam_attempt is not available on MongoDB")

    async def close(self) -> None:
        self.client.close()
