"""FastAPI application entry point for the prompt enhancement service.

Run with:
    uvicorn promptforge.api.main:app
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from promptforge.api.routes import prompts, system
from promptforge.config import AppSettings, load_settings
from promptforge.logging_config import setup_logging
from promptforge.service import PromptService, build_service

logger = logging.getLogger(__name__)


def create_app(
    service: PromptService | None = None,
    settings: AppSettings | None = None,
) -> FastAPI:
    """Build the application and configure logging at the settings' level.

    Args:
        service: Pre-built PromptService (tests); built from settings and
            environment credentials on startup when omitted
        settings: Engine settings; taken from ``service`` or loaded from
            YAML/environment when omitted
    """
    if settings is None:
        settings = service.settings if service is not None else load_settings()
    setup_logging(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "prompt_service", None) is None:
            app.state.prompt_service = build_service(settings=settings)
        providers = app.state.prompt_service.available_providers()
        if providers:
            logger.info(f"AI providers configured: {', '.join(providers)}")
        else:
            logger.warning("No AI providers configured; enhancement will run in degraded mode")
        yield
        logger.info("Prompt service shutting down")

    app = FastAPI(
        title="PromptForge API",
        description="Multi-provider prompt enhancement and execution",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.prompt_service = service

    allowed_origins = os.getenv("ALLOWED_ORIGINS", "")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins.split(",") if allowed_origins else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(prompts.router)
    app.include_router(system.router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
