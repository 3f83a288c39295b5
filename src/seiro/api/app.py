"""FastAPI application factory for the Seiro build API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI

from seiro import __version__
from seiro.api.deps import get_build_service, running_build_service
from seiro.api.middleware import BearerAuthMiddleware, RequestTimingMiddleware
from seiro.api.routers import builds, sandbox
from seiro.api.schemas import HealthResponse
from seiro.service.build_service import BuildService
from seiro.settings import Settings

logger = logging.getLogger("seiro.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Start/stop the BuildService sweep alongside the application."""
    with running_build_service(app.state.settings):
        yield


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Seiro visionOS Build API",
        description="Validates the build sandbox, runs xcodebuild and serves packaged artifacts.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Middleware (last added runs first)
    if settings.auth_token:
        app.add_middleware(BearerAuthMiddleware, token=settings.auth_token)
    app.add_middleware(RequestTimingMiddleware)

    app.include_router(sandbox.router, prefix="/sandbox", tags=["sandbox"])
    app.include_router(builds.router, prefix="/builds", tags=["builds"])

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health(
        service: BuildService = Depends(get_build_service),  # noqa: B008
    ) -> HealthResponse:
        return HealthResponse(**service.health())

    return app


def main() -> None:
    """Run the REST API server using settings from environment / .env file."""
    settings = Settings()

    logging.basicConfig(level=settings.log_level.upper())
    logger.info(
        "Seiro API Server v%s starting (host=%s, port=%d)",
        __version__,
        settings.api_server_host,
        settings.effective_port,
    )

    uvicorn.run(
        "seiro.api.app:create_app",
        factory=True,
        host=settings.api_server_host,
        port=settings.effective_port,
        log_level=settings.log_level.lower(),
    )
