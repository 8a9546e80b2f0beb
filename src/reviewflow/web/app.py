"""FastAPI application factory for Reviewflow.

This module provides the main application factory function that creates
and configures a FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database connection and workflow service lifecycle management
- Workflow error to HTTP status translation
- Health, entity and review endpoints

Example usage:
    >>> from reviewflow.config import ReviewflowConfig
    >>> from reviewflow.web.app import create_app
    >>>
    >>> app = create_app(ReviewflowConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewflow import __version__
from reviewflow.config import ReviewflowConfig
from reviewflow.container import build_services
from reviewflow.database.connection import get_engine, get_session_factory
from reviewflow.logging import get_logger
from reviewflow.web.errors import register_error_handlers
from reviewflow.web.middleware import RequestLoggingMiddleware
from reviewflow.web.routes.entities import create_entities_router
from reviewflow.web.routes.health import create_health_router
from reviewflow.web.routes.reviews import create_reviews_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle with database connections.

    Creates the engine, session factory and workflow services on startup
    and stores them in app.state for dependency injection. Disposes of the
    engine and adapter clients on shutdown.
    """
    config: ReviewflowConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine = get_engine(config.database)
    session_factory = get_session_factory(engine)
    services = build_services(config, session_factory)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.services = services

    logger.info(
        "database_pool_initialized",
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )

    yield

    logger.info("app_shutdown_begin")
    await services.close()
    await engine.dispose()
    logger.info("database_pool_disposed")


def create_app(config: ReviewflowConfig | None = None) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional ReviewflowConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = ReviewflowConfig()

    app = FastAPI(
        title="Reviewflow",
        version=__version__,
        description="Review and lifecycle workflow engine",
        lifespan=lifespan,
    )

    # Store config in app.state for lifespan access
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(create_health_router())
    app.include_router(create_entities_router())
    app.include_router(create_reviews_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=__version__,
    )

    return app
