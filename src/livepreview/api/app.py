# src/livepreview/api/app.py
"""
FastAPI application factory for the live preview service.

The lifespan starts the service (orphan sweep + idle sweep loop) and
shuts it down on exit, stopping every preview when configured to.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..config import LivePreviewConfig, load_config
from ..logging_config import configure_logging
from ..service import LivePreviewService
from .routes import router

logger = logging.getLogger(__name__)


def create_app(
    service: LivePreviewService | None = None,
    config: LivePreviewConfig | None = None,
    prefix: str = "/previews",
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        service: Pre-built service; created from ``config`` at startup when omitted
        config: Configuration used when no service is given; loaded from file and environment when omitted
        prefix: Mount point of the preview routes
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.service is None:
            cfg = config or load_config()
            configure_logging(cfg.logging)
            app.state.service = LivePreviewService(config=cfg)
        logger.info("Starting live preview API")
        await app.state.service.start()
        try:
            yield
        finally:
            logger.info("Shutting down live preview API")
            await app.state.service.shutdown()

    app = FastAPI(
        title="Live Preview API",
        description="Ephemeral preview containers with health monitoring and error detection",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.include_router(router, prefix=prefix, tags=["previews"])

    @app.get("/health")
    async def health() -> dict:
        svc = app.state.service
        return {
            "status": "ok" if svc is not None else "unavailable",
            "active_previews": len(svc.list_previews()) if svc is not None else 0,
        }

    return app
