from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studify.api.router import router
from studify.errors import AuthenticationError, StudifyError
from studify.observability import configure_logging, init_otel
from studify.settings import settings
from studify.wiring import get_repo

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.env}, storage={settings.storage_backend})")
    if settings.storage_backend.lower() == "mongo":
        await get_repo().ensure_indexes()
    yield
    if get_repo.cache_info().currsize:
        await get_repo().close()
    logger.info("Shutdown complete")


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    init_otel(
        app=app,
        enabled=settings.observability_enabled,
        service_name=settings.otel_service_name,
        otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        console_exporter=settings.otel_exporter_console,
        sample_rate=settings.otel_sample_rate,
        environment=settings.env,
    )

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StudifyError)
    async def studify_error_handler(request: Request, exc: StudifyError):
        content = {"success": False, "error": exc.message}
        if exc.detail:
            content["detail"] = exc.detail
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {str(exc)}")
        logger.error(f"Traceback: {''.join(traceback.format_tb(exc.__traceback__))}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "detail": str(exc)},
        )

    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.env, "storage_backend": settings.storage_backend}

    return app


app = create_app()
