from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from studify.api.common import ok, require_uuid
from studify.auth import CurrentUser, get_current_user
from studify.services.attempts import AttemptService
from studify.wiring import get_attempt_service

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def list_history(
    page: int = Query(1),
    limit: int = Query(10),
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    items, pagination = await service.list_history(user.user_id, page=page, limit=limit)
    return ok(items, pagination=pagination.model_dump(by_alias=True))


@router.get("/{attempt_id}")
async def get_history_attempt(
    attempt_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    return ok(await service.get_history_detail(require_uuid(attempt_id, "Attempt"), user.user_id))


@router.delete("/{attempt_id}")
async def delete_history_attempt(
    attempt_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service),
) -> dict[str, Any]:
    attempt_id = require_uuid(attempt_id, "Attempt")
    await service.delete_history_attempt(attempt_id, user.user_id)
    return ok({"attempt_id": attempt_id}, message="Attempt deleted")
