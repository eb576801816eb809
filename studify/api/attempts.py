from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from studify.api.common import ok, require_uuid
from studify.auth import CurrentUser, get_current_user
from studify.models import AttemptStatus, StartAttemptRequest, UpdateAttemptRequest, dump_question
from studify.services.attempts import AttemptService
from studify.wiring import get_attempt_service

router = APIRouter(prefix="/attempts", tags=["attempts"])


@router.post("", status_code=201)
async def start_attempt(
    req: StartAttemptRequest,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    template_id = require_uuid(req.template_id, "Template")
    started = await service.start_attempt(template_id, user.user_id)
    return ok(
        {
            "attempt": started.attempt.model_dump(mode="json"),
            "template": started.template.model_dump(mode="json"),
            "questions": [dump_question(q, reveal=False) for q in started.questions],
        }
    )


@router.get("")
async def list_attempts(
    template_id: Optional[str] = Query(None),
    status: Optional[AttemptStatus] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    if template_id:
        template_id = require_uuid(template_id, "Template")
    attempts = await service.list_attempts(
        user.user_id, template_id=template_id, status=status, limit=limit, offset=offset
    )
    return ok([a.model_dump(mode="json") for a in attempts])


@router.get("/{attempt_id}")
async def get_attempt(
    attempt_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    return ok(await service.get_attempt_detail(require_uuid(attempt_id, "Attempt"), user.user_id))


@router.patch("/{attempt_id}")
async def update_attempt(
    attempt_id: str,
    req: UpdateAttemptRequest,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    attempt = await service.update_attempt(require_uuid(attempt_id, "Attempt"), user.user_id, req)
    return ok({"attempt": attempt.model_dump(mode="json")})
