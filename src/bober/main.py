"""Entry point for the Bober incident workflow service.

Creates the FastAPI application, configures logging, and starts the
uvicorn server.
"""

from __future__ import annotations

import structlog
import uvicorn
from fastapi import FastAPI

from bober.api import create_app
from bober.config import Settings, get_settings
from bober.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def build_app(settings: Settings | None = None) -> FastAPI:
    """Construct the fully-configured application."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, json_logs=not settings.is_development)

    app = create_app(settings)

    logger.info(
        "application_ready",
        service=settings.service_name,
        version=settings.service_version,
        port=settings.port,
        model=settings.ollama_model,
        resolution_enabled=settings.enable_resolution,
        docs_url=f"http://localhost:{settings.port}/docs",
    )

    return app


def main() -> None:
    """Launch the Bober server."""
    settings = get_settings()
    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
