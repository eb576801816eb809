import asyncio
import math

import pytest

from studify.errors import RoutineUnavailable
from studify.models import Question, ResponseDetail
from studify.scoring import TRIM_CHARS, grade_all, score_attempt
from studify.storage.mongo import MongoExamRepository, _trimmed, grading_pipeline, totals_pipeline

MISSING = object()

# Expression and stage evaluator covering the operators the two pipelines use,
# with MongoDB's semantics for missing fields and truthiness.


def _field(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return MISSING
        value = value[part]
    return value


def _nullish(value):
    return value is None or value is MISSING


def _truthy(value):
    return not (_nullish(value) or value is False or (isinstance(value, (int, float)) and value == 0))


def _type(value):
    if value is MISSING:
        return "missing"
    if value is None:
        return "null"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, str):
        return "string"
    return "number"


def _eval(expr, doc):
    if isinstance(expr, str) and expr.startswith("$"):
        return _field(doc, expr[1:])
    if not isinstance(expr, dict):
        return expr
    ((op, arg),) = expr.items()
    if op == "$trim":
        assert "chars" in arg, "$trim without chars uses MongoDB's own whitespace set"
        value = _eval(arg["input"], doc)
        return None if _nullish(value) else value.strip(arg["chars"])
    if op == "$ifNull":
        value = _eval(arg[0], doc)
        return _eval(arg[1], doc) if _nullish(value) else value
    if op == "$cond":
        return _eval(arg[1] if _truthy(_eval(arg[0], doc)) else arg[2], doc)
    if op == "$and":
        return all(_truthy(_eval(a, doc)) for a in arg)
    if op == "$type":
        return _type(_eval(arg, doc))
    if op == "$floor":
        return math.floor(_eval(arg, doc))

    values = [_eval(a, doc) for a in arg]
    if op == "$eq":
        return values[0] == values[1]
    if op == "$ne":
        return values[0] != values[1]
    if op == "$gt":
        return values[0] > values[1]
    if op == "$add":
        return sum(values)
    if op == "$subtract":
        return values[0] - values[1]
    if op == "$multiply":
        return math.prod(values)
    if op == "$divide":
        return values[0] / values[1]
    raise AssertionError(f"unsupported operator {op}")


def _sum(values):
    return sum(v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool))


def _run(pipeline, docs):
    """Run the stages after the question join over already joined documents."""
    for stage in pipeline:
        ((name, body),) = stage.items()
        if name in ("$match", "$lookup", "$unwind", "$merge"):
            continue
        if name == "$set":
            docs = [{**doc, **{key: _eval(expr, doc) for key, expr in body.items()}} for doc in docs]
        elif name == "$group":
            group = {"_id": None}
            for key, accumulator in body.items():
                if key == "_id":
                    continue
                ((op, arg),) = accumulator.items()
                assert op == "$sum"
                group[key] = _sum(_eval(arg, doc) for doc in docs)
            docs = [group]
        elif name == "$project":
            if all(body.values()):
                docs = [{key: doc[key] for key in body if key in doc} for doc in docs]
            else:
                docs = [{key: value for key, value in doc.items() if key not in body} for doc in docs]
        else:
            raise AssertionError(f"unsupported stage {name}")
    return docs


def _question(number, points):
    return Question(
        template_id="t-1",
        question_number=number,
        question_text=f"Question {number}",
        correct_answer="A",
        points=points,
    )


def test_grading_pipeline_merges_back_into_responses():
    pipeline = grading_pipeline("a-1")

    assert pipeline[0] == {"$match": {"attempt_id": "a-1"}}
    assert pipeline[1]["$lookup"]["from"] == "mock_exam_questions"
    assert pipeline[-1]["$merge"]["into"] == "mock_exam_responses"
    assert pipeline[-1]["$merge"]["whenNotMatched"] == "discard"


def test_totals_pipeline_rounds_half_up():
    pipeline = totals_pipeline("a-1")
    stages = {next(iter(stage)): stage for stage in pipeline}

    percentage = stages["$set"]["$set"]["percentage"]["$cond"]
    assert percentage[0] == {"$gt": ["$max_points", 0]}
    assert percentage[1]["$floor"]["$add"][1] == 0.5
    assert percentage[2] == 0
    assert stages["$group"]["$group"]["max_points"] == {"$sum": {"$ifNull": ["$question.points", 1]}}


def test_no_complete_routine_on_mongo():
    repo = MongoExamRepository("mongodb://localhost:27017", "studify_test")

    with pytest.raises(RoutineUnavailable):
        asyncio.run(repo.run_complete_attempt("a-1", None))


def test_trim_uses_the_scoring_character_set():
    assert _trimmed("$user_answer")["$trim"]["chars"] == TRIM_CHARS


def test_pipelines_score_like_score_attempt():
    # (answer, points); points None means the question row is gone.
    cases = [
        ("A", 2),
        (" A\t", 1),
        ("\u00a0A", 3),
        ("\x1cA", 1),
        ("\x85", 1),
        ("\x00", 1),
        ("\u00a0 ", 1),
        (None, 2),
        ("", 1),
        ("B", 1),
        ("A", None),
    ]
    rows = []
    joined = []
    for number, (answer, points) in enumerate(cases, start=1):
        question = _question(number, points) if points is not None else None
        rows.append(
            ResponseDetail(attempt_id="a-1", question_id=f"q-{number}", user_answer=answer, question=question)
        )
        doc = {"_id": number, "attempt_id": "a-1", "question_id": f"q-{number}", "user_answer": answer}
        if question is not None:
            doc["question"] = question.model_dump(mode="json")
        joined.append(doc)

    grades = {doc["_id"]: doc for doc in _run(grading_pipeline("a-1"), joined)}
    graded = [{**doc, **grades[doc["_id"]]} for doc in joined]
    (totals,) = _run(totals_pipeline("a-1"), graded)

    expected = score_attempt(rows)
    assert {key: int(value) for key, value in totals.items()} == expected.model_dump()
    assert expected.answered_questions == 8
    assert expected.correct_answers == 3
    assert [(grades[n]["is_correct"], grades[n]["points_earned"]) for n in sorted(grades)] == [
        (g.is_correct, g.points_earned) for g in grade_all(rows)
    ]


def test_pipeline_percentage_rounds_half_up():
    answers = ["A"] + ["B"] * 7
    rows = [
        ResponseDetail(attempt_id="a-1", question_id=f"q-{n}", user_answer=answer, question=_question(n, 1))
        for n, answer in enumerate(answers, start=1)
    ]
    joined = [
        {"_id": n, "user_answer": r.user_answer, "question": r.question.model_dump(mode="json")}
        for n, r in enumerate(rows, start=1)
    ]
    grades = {doc["_id"]: doc for doc in _run(grading_pipeline("a-1"), joined)}
    (totals,) = _run(totals_pipeline("a-1"), [{**doc, **grades[doc["_id"]]} for doc in joined])

    assert int(totals["percentage"]) == score_attempt(rows).percentage == 13
