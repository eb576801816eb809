from fastapi import APIRouter

from studify.api.attempts import router as attempts_router
from studify.api.history import router as history_router
from studify.api.responses import router as responses_router
from studify.api.results import router as results_router
from studify.api.templates import router as templates_router

router = APIRouter()
router.include_router(templates_router)
router.include_router(attempts_router)
router.include_router(responses_router)
router.include_router(results_router)
router.include_router(history_router)
