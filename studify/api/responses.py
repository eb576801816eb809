from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from studify.api.common import ok, require_uuid
from studify.auth import CurrentUser, get_current_user
from studify.models import SaveResponseRequest
from studify.services.attempts import AttemptService
from studify.wiring import get_attempt_service

router = APIRouter(prefix="/responses", tags=["responses"])


@router.post("")
async def save_response(
    req: SaveResponseRequest,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    """Record one answer; repeated calls for the same question overwrite it."""
    attempt_id = require_uuid(req.attempt_id, "Attempt")
    require_uuid(req.question_id, "Question")
    saved = await service.record_response(attempt_id, user.user_id, req)
    return ok(saved.model_dump(mode="json"))
