"""
Post Search Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and owns the service lifecycle.

Design Goals
------------
- Deterministic startup: every client is built once, before the first request
- The event bus worker and the idempotency sweep live exactly as long as
  the application
- Global exception safety net
- Test-friendly via create_app(container=...)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .api import health_routes, search_routes, webhook_routes
from .api.dependencies import ServiceContainer, build_container
from .config import Settings, get_settings
from .core.errors import unhandled_exception_handler
from .events.bus import start_worker, stop_worker
from .events.idempotency import start_purger


logger = logging.getLogger("post_search.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    settings : Optional[Settings]
        Configuration. Defaults to the environment via ``get_settings()``.

    container : Optional[ServiceContainer]
        Pre-built services (tests). When None, services are built from
        ``settings`` at startup.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    settings = settings or (container.settings if container else get_settings())

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting post-search-server")

        services = container or build_container(settings)
        await services.startup()
        app.state.container = services

        worker = start_worker(services.event_bus, services.dispatcher)
        purger = start_purger(
            services.idempotency_guard,
            services.settings.idempotency_purge_interval_seconds,
        )
        logger.info("Configuration validated successfully")

        try:
            yield
        finally:
            logger.info("Shutting down post-search-server")
            await stop_worker(purger)
            await stop_worker(worker)
            await services.close()

    app = FastAPI(
        title="post-search-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(webhook_routes.router)
    app.include_router(search_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
