"""Prompt Lab Workflow Engine - executor service (FastAPI application)."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from api.routes import health, workflows
from api.routes.ws import router as ws_router
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from integrations.model_invoker import UnconfiguredModelInvoker, get_model_invoker
from worker.jobs import get_job_service

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()

    if isinstance(get_model_invoker(), UnconfiguredModelInvoker):
        logger.warning("No model provider configured; AI tasks will fail")

    logger.info(
        "Executor started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        max_concurrent_jobs=settings.MAX_CONCURRENT_JOBS,
    )
    yield
    await get_job_service().shutdown()
    logger.info("Executor shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Remote executor for prompt-lab workflows: single-task execution, "
                    "background workflow jobs and live progress over WebSocket.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    app.include_router(health.router, prefix=settings.API_PREFIX, tags=["Health"])
    app.include_router(workflows.router, prefix=settings.API_PREFIX)

    # WebSocket endpoint (mounted directly on the app)
    app.include_router(ws_router)

    return app


app = create_app()
