"""FormBridge FastAPI application entry point.

Configures the FastAPI app with:
- CORS middleware
- Lifespan events building the storage backend and integration service
- Route registration (health, integrations)
- Typed integration errors mapped to HTTP status codes
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from formbridge.api.routes import health, integrations
from formbridge.api.version import API_VERSION
from formbridge.core.config import Settings, get_settings
from formbridge.core.redis import create_redis_client, verify_redis_connectivity
from formbridge.integrations.errors import IntegrationError, ValidationFailed
from formbridge.integrations.service import create_service
from formbridge.integrations.storage import InMemoryBackend, KeyValueBackend, RedisBackend

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    On startup: create the storage backend and the integration service.
    On shutdown: close the Redis connection if one was opened.
    """
    settings = get_settings()

    # -- Storage ---
    backend: KeyValueBackend
    redis_client = None
    if settings.storage_backend == "redis":
        redis_client = create_redis_client(settings)
        if await verify_redis_connectivity(redis_client):
            logger.info("Redis connection verified")
        else:
            logger.warning("Redis is not reachable; starting in degraded mode")
        backend = RedisBackend(redis_client)
    else:
        backend = InMemoryBackend()
        logger.info("Using in-memory storage backend")
    app.state.redis_client = redis_client

    # -- Integration Service ---
    app.state.integration_service = create_service(settings, backend)
    logger.info("Integration service initialized (credentials from %s)", settings.credentials_source)

    yield

    # -- Shutdown ---
    if redis_client is not None:
        await redis_client.aclose()
    logger.info("All connections closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Field mapping and submission dispatch for form-to-CRM integrations",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    app.include_router(health.router)
    app.include_router(integrations.router)

    # -- Error Handlers ---
    @app.exception_handler(IntegrationError)
    async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
        logger.warning("Integration error on %s (%s): %s", request.url.path, exc.kind, exc.message)
        content: dict[str, object] = {"detail": exc.message, "kind": exc.kind}
        if isinstance(exc, ValidationFailed) and exc.errors:
            content["errors"] = exc.errors
        if exc.remediation_hint:
            content["remediation_hint"] = exc.remediation_hint
        return JSONResponse(status_code=exc.status_code, content=content)

    return app


# Application instance used by uvicorn
app = create_app()
