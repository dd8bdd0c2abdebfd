"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
creates the rate limiter the app owns. Each call returns an app with its own
empty limiter, which keeps tests isolated without a global reset.
"""

from __future__ import annotations

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.api.routes import health_router, rate_limits_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import build_rate_limiter


def create_app(*, rate_limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limiter: Limiter to install; a fresh in-memory one by default.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Household Rate Limiter",
        description=(
            "Fixed-window request throttling for the household task app. "
            "Routes pick a named policy (vocal, auth, stripe, export, ...) and "
            "receive a 429 with X-RateLimit-* headers once the quota is spent."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    app.state.rate_limiter = rate_limiter or build_rate_limiter(settings.app)

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
