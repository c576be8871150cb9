"""Main application entrypoint for the image pipeline."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from imagepipe.api.v1 import routes_events, routes_health
from imagepipe.core.config import settings
from imagepipe.core.logging import setup_logging
from imagepipe.pipeline import Pipeline, build_pipeline
from imagepipe.services.mailer import get_mailer
from imagepipe.storage import get_object_store

logger = logging.getLogger(__name__)


def create_app(pipeline: Optional[Pipeline] = None, start_pollers: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        pipeline: Pre-built pipeline; built from settings when omitted
        start_pollers: Run queue and stream pollers for the app lifetime

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_pollers:
            app.state.pipeline.start()
        logger.info(
            "Image pipeline service started",
            extra={
                "environment": settings.ENV,
                "table_name": settings.TABLE_NAME,
                "dead_letter_queue": settings.DLQ_URL,
                "region": settings.REGION,
            },
        )
        yield
        await app.state.pipeline.stop()
        logger.info("Image pipeline service shutting down")

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline or build_pipeline(
        settings, get_object_store(settings), get_mailer(settings)
    )

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_events.router, tags=["events"])

    return app


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
