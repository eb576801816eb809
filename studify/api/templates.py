from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from studify.api.common import ok, require_uuid
from studify.auth import CurrentUser, get_current_user
from studify.models import CreateTemplateRequest, UpdateTemplateRequest, dump_question
from studify.services.templates import TemplateService
from studify.wiring import get_template_service

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("")
async def list_templates(
    category: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    service: TemplateService = Depends(get_template_service),
) -> dict[str, Any]:
    templates = await service.list_templates(category=category, featured=featured)
    return ok([t.model_dump(mode="json") for t in templates])


@router.post("", status_code=201)
async def create_template(
    req: CreateTemplateRequest,
    user: CurrentUser = Depends(get_current_user),
    service: TemplateService = Depends(get_template_service),
) -> dict[str, Any]:
    template, questions = await service.create_template(req, user.user_id)
    return ok(
        {
            "template": template.model_dump(mode="json"),
            "questions": [dump_question(q, reveal=True) for q in questions],
        }
    )


@router.get("/{template_id}")
async def get_template(
    template_id: str,
    service: TemplateService = Depends(get_template_service),
) -> dict[str, Any]:
    template, questions = await service.get_template(require_uuid(template_id, "Template"))
    return ok(
        {
            "template": template.model_dump(mode="json"),
            "questions": [dump_question(q, reveal=False) for q in questions],
        }
    )


@router.put("/{template_id}")
async def update_template(
    template_id: str,
    req: UpdateTemplateRequest,
    user: CurrentUser = Depends(get_current_user),
    service: TemplateService = Depends(get_template_service),
) -> dict[str, Any]:
    template = await service.update_template(require_uuid(template_id, "Template"), user.user_id, req)
    return ok(template.model_dump(mode="json"))


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: TemplateService = Depends(get_template_service),
) -> dict[str, Any]:
    template = await service.deactivate_template(require_uuid(template_id, "Template"), user.user_id)
    return ok(template.model_dump(mode="json"), message="Template deactivated")
