"""FastAPI entry point for the grading service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from assessor import __version__
from assessor.api.errors import register_error_handlers
from assessor.api.middleware import RequestIdMiddleware
from assessor.api.routes import router
from assessor.config import Settings, get_settings
from assessor.grading.engine import GradingEngine

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the service."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def create_app(
    settings: Settings | None = None, engine: GradingEngine | None = None
) -> FastAPI:
    """
    Build the grading API application.

    Args:
        settings: Configuration settings. Uses global settings if not provided.
        engine: Pre-built grading engine (mainly for tests). Built lazily if not provided.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Brief Assessor",
        description="Evidence-linked assignment grading against locked briefs",
        version=__version__,
    )
    app.state.settings = settings
    if engine is not None:
        app.state.engine = engine

    app.add_middleware(RequestIdMiddleware)
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
