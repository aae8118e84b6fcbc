"""
Main FastAPI application for the drift engine.

This module sets up the FastAPI application with middleware, CORS
configuration, exception handlers and API routes.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from opsdrift.api.v1 import router as api_router
from opsdrift.api.v1.providers import get_remote_executor
from opsdrift.config.logging_config import setup_logging
from opsdrift.config.settings import get_settings
from opsdrift.database import dispose_engine, init_database
from opsdrift.middleware.error_handler import request_context_middleware, setup_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    setup_logging(settings.get_logging_config())
    logger.info(f"Starting {settings.app_name} {settings.version}")

    try:
        await init_database()
    except Exception as e:
        # Queries report 503 until the store is reachable.
        logger.error(f"Database startup failed: {e}")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    try:
        await get_remote_executor().close()
        await dispose_engine()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Git state reconciliation and drift classification.",
        version=settings.version,
        lifespan=lifespan,
        openapi_url=f"{settings.api_v1_str}/openapi.json"
    )

    app.add_middleware(CORSMiddleware, **settings.get_cors_config())
    setup_exception_handlers(app)
    app.middleware("http")(request_context_middleware)

    app.include_router(api_router, prefix=settings.api_v1_str)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"message": f"{settings.app_name} is running."}

    return app


app = create_app()


def run():
    """Console entry point."""
    import uvicorn
    settings = get_settings()
    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(
        "opsdrift.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload_on_change
    )


if __name__ == "__main__":
    run()
