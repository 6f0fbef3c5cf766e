"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stackpilot.api.dependencies.services import ServiceContainer
from stackpilot.api.middleware.correlation import CorrelationIdMiddleware
from stackpilot.api.routes import (
    application_routes,
    environment_routes,
    health_routes,
    project_routes,
)
from stackpilot.config import get_settings, Settings


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    container = ServiceContainer.get_instance()
    settings = container.settings
    logger.info(
        "application_starting",
        environment=settings.environment.value,
        simulate=settings.deploy.simulate,
        registry=settings.deploy.registry_backend.value,
    )
    await container.startup()

    yield

    logger.info("application_shutting_down")
    await container.shutdown()
    logger.info("application_shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="stackpilot",
        description="Environment bring-up and application deployment on change-set stacks",
        version="0.1.0",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    # Middleware (first added = innermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(health_routes.router)
    app.include_router(project_routes.router, prefix=settings.api_prefix)
    app.include_router(environment_routes.router, prefix=settings.api_prefix)
    app.include_router(application_routes.router, prefix=settings.api_prefix)

    return app
