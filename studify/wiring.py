from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from studify.services.attempts import AttemptService
from studify.services.results import ResultCalculator
from studify.services.templates import TemplateService
from studify.settings import settings
from studify.storage.inmemory import InMemoryExamRepository
from studify.storage.repo import ExamRepository


@lru_cache
def get_repo() -> ExamRepository:
    backend = (settings.storage_backend or "inmemory").lower()
    if backend == "mongo":
        from studify.storage.mongo import MongoExamRepository

        return MongoExamRepository(settings.mongodb_uri, settings.mongodb_db)
    if backend == "supabase":
        from studify.storage.supabase_db import SupabaseExamRepository

        return SupabaseExamRepository(settings.supabase_url, settings.supabase_key)
    return InMemoryExamRepository()


def get_calculator(repo: ExamRepository = Depends(get_repo)) -> ResultCalculator:
    return ResultCalculator(
        repo,
        use_server_routines=settings.use_server_routines,
        default_subject=settings.default_subject,
        default_passing_score=settings.default_passing_score,
    )


def get_attempt_service(
    repo: ExamRepository = Depends(get_repo),
    calculator: ResultCalculator = Depends(get_calculator),
) -> AttemptService:
    return AttemptService(repo, calculator)


def get_template_service(repo: ExamRepository = Depends(get_repo)) -> TemplateService:
    return TemplateService(repo)
