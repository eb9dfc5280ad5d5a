"""FastAPI application entry point.

This module initializes the Pin-a-Tree API with CORS, error handling,
rate limiting, static serving of uploaded photos, and route
registration.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded

from app.api.endpoints import auth, health, trees, uploads
from app.core.config import settings
from app.core.logging import setup_logging
from app.middleware.error_handler import ErrorHandlerMiddleware, setup_exception_handlers
from app.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from app.services.database import create_tables, engine

setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle events.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info("Starting Pin-a-Tree API...")
    logger.info(f"Environment: {settings.APP_ENV}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    if settings.USE_MOCK_EXTRACTION:
        logger.warning("Mock GPS extraction is enabled; photo locations are invented")

    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    if settings.DB_AUTO_CREATE:
        await create_tables()

    yield

    # Shutdown
    logger.info("Shutting down Pin-a-Tree API...")
    await engine.dispose()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Pin-a-Tree API",
        description=(
            "Community tree mapping. Upload a tree photo, let the API read "
            "its GPS position from the EXIF metadata, and pin it on the map."
        ),
        version=health.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_middleware(ErrorHandlerMiddleware)

    setup_exception_handlers(app)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Register routers
    app.include_router(health.router, prefix=settings.API_PREFIX)
    app.include_router(auth.router, prefix=settings.API_PREFIX)
    app.include_router(uploads.router, prefix=settings.API_PREFIX)
    app.include_router(trees.router, prefix=settings.API_PREFIX)

    # Stored photos
    app.mount(
        settings.UPLOAD_URL_PREFIX,
        StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
        name="uploads",
    )

    return app


# Create the application instance
app = create_application()
