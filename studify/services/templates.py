from __future__ import annotations

import logging
from typing import Optional

from studify.errors import InternalError, StudifyError, ValidationError
from studify.models import CreateTemplateRequest, Question, Template, UpdateTemplateRequest
from studify.storage.repo import ExamRepository

logger = logging.getLogger(__name__)


class TemplateService:
    def __init__(self, repo: ExamRepository) -> None:
        self.repo = repo

    async def list_templates(self, category: Optional[str] = None, featured: Optional[bool] = None) -> list[Template]:
        if category == "all":
            category = None
        return await self.repo.list_templates(category=category, featured=featured)

    async def get_template(self, template_id: str) -> tuple[Template, list[Question]]:
        template = await self.repo.get_template(template_id)
        questions = await self.repo.list_questions(template_id)
        return template, questions

    async def create_template(self, req: CreateTemplateRequest, user_id: str) -> tuple[Template, list[Question]]:
        template = Template(
            **req.model_dump(exclude={"questions"}),
            created_by=user_id,
            total_questions=len(req.questions),
        )

        questions = []
        for index, item in enumerate(req.questions, start=1):
            questions.append(
                Question(
                    template_id=template.id,
                    question_number=item.question_number or index,
                    **item.model_dump(exclude={"question_number"}),
                )
            )
        numbers = [q.question_number for q in questions]
        if len(set(numbers)) != len(numbers):
            raise ValidationError("Question numbers must be unique")

        try:
            await self.repo.create_template(template, questions)
        except StudifyError:
            raise
        except Exception as e:
            logger.error(f"Creating template '{template.title}' failed: {str(e)}")
            raise InternalError("Failed to create template", detail=str(e)) from e

        logger.info(f"User {user_id} created template {template.id} with {len(questions)} questions")
        return template, questions

    async def update_template(self, template_id: str, user_id: str, req: UpdateTemplateRequest) -> Template:
        patch = req.model_dump(exclude_none=True)
        if not patch:
            raise ValidationError("No fields to update")
        return await self.repo.update_template(template_id, user_id, patch)

    async def deactivate_template(self, template_id: str, user_id: str) -> Template:
        template = await self.repo.update_template(template_id, user_id, {"is_active": False})
        logger.info(f"Template {template_id} deactivated by {user_id}")
        return template
