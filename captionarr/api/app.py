"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from captionarr.api.routes import health, templates
from captionarr.config import APP_DESCRIPTION, APP_NAME, VERSION
from captionarr.utilities.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown."""
    setup_logging()
    logger.info(f"Starting {APP_NAME} {VERSION}...")

    yield

    logger.info(f"{APP_NAME} stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=APP_NAME,
        description=APP_DESCRIPTION,
        version=VERSION,
        lifespan=lifespan,
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(templates.router, prefix="/api/v1", tags=["Templates"])

    return app


app = create_app()
