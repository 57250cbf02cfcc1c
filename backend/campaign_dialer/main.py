"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campaign_dialer.api.v1 import auth, datasets, dialer, webhooks
from campaign_dialer.config import Settings, get_settings
from campaign_dialer.db.session import AsyncSessionLocal, init_db
from campaign_dialer.services.runtime import DialerRuntime, build_runtime

logger = structlog.get_logger(__name__)


def configure_logging(settings: Settings) -> None:
    """Filter structlog output at the configured level."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    runtime: DialerRuntime = app.state.runtime
    settings = runtime.settings
    logger.info("Starting", app_name=settings.app_name)
    if settings.auto_create_tables:
        await init_db()
    await runtime.registry.restore()
    yield
    logger.info("Shutting down")
    await runtime.registry.shutdown()
    await runtime.dispatcher.aclose()


def create_app(runtime: DialerRuntime | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = runtime.settings if runtime else get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Outbound voice-AI campaign dialer",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime or build_runtime(settings, AsyncSessionLocal)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(dialer.router, prefix="/api/v1")
    app.include_router(datasets.router, prefix="/api/v1")
    app.include_router(webhooks.router)  # No prefix - provider calls exact paths

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
