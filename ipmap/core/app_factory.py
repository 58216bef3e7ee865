from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
background jobs) to improve testability.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ipmap import __version__
from ipmap.api.routes import health_router, ip_ranges_router, operations_router
from ipmap.core.config import settings
from ipmap.core.dependencies import get_sync_controller
from ipmap.core.exception_handlers import setup_exception_handlers
from ipmap.core.logging import configure_logging
from ipmap.core.middleware import request_id_middleware
from ipmap.core.openapi import apply_openapi_customizations
from ipmap.core.rate_limit import sweep_rate_limiters
from ipmap.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the synchronizer and the rate-limit sweep; stop them on shutdown."""

    sweeper = PeriodicTask(
        "rate-limit-sweep",
        sweep_rate_limiters,
        settings.rate_limit.sweep_interval_seconds,
        run_immediately=False,
    )
    if settings.rate_limit.enabled:
        sweeper.start()

    controller = get_sync_controller() if settings.sync.enabled else None
    if controller is not None:
        controller.schedule()
    else:
        logger.info("sync.disabled")

    try:
        yield
    finally:
        if controller is not None:
            await controller.stop()
        await sweeper.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="IPMap API",
        description=(
            "Serves the published AWS IP ranges from a locally cached snapshot that a "
            "background job keeps in sync. Endpoints are rate limited per client; "
            "responses carry X-RateLimit-* headers."
        ),
        version=__version__,
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(ip_ranges_router, prefix="/v1")
    app.include_router(operations_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (shared 429/503 responses, tags)
    apply_openapi_customizations(app)

    return app
