from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from studify.api.common import ok, require_uuid
from studify.auth import CurrentUser, get_current_user
from studify.models import AttemptResults, AttemptStatus, CalculateResultsRequest, CompleteAttemptRequest, dump_response
from studify.services.attempts import AttemptService
from studify.services.results import ResultCalculator
from studify.wiring import get_attempt_service, get_calculator

router = APIRouter(tags=["results"])


def _render(results: AttemptResults) -> dict[str, Any]:
    reveal = results.attempt.status == AttemptStatus.completed
    body = results.model_dump(mode="json", by_alias=True, exclude={"responses"})
    body["responses"] = [dump_response(row, reveal) for row in results.responses]
    return body


@router.post("/calculate-results")
async def calculate_results(
    req: CalculateResultsRequest,
    user: CurrentUser = Depends(get_current_user),
    calculator: ResultCalculator = Depends(get_calculator),
) -> dict[str, Any]:
    attempt_id = require_uuid(req.attempt_id, "Attempt")
    return ok(_render(await calculator.calculate(attempt_id, user.user_id)))


@router.get("/results/{attempt_id}")
async def get_results(
    attempt_id: str,
    user: CurrentUser = Depends(get_current_user),
    calculator: ResultCalculator = Depends(get_calculator),
) -> dict[str, Any]:
    attempt_id = require_uuid(attempt_id, "Attempt")
    return ok(_render(await calculator.build_results(attempt_id, user.user_id)))


@router.post("/complete")
async def complete_attempt(
    req: CompleteAttemptRequest,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    attempt_id = require_uuid(req.attempt_id, "Attempt")
    for response in req.responses or []:
        require_uuid(response.question_id, "Question")
    summary = await service.complete_attempt(attempt_id, user.user_id, req.responses)
    return ok(summary.model_dump(mode="json"))
