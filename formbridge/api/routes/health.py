"""Health check endpoint.

Reports overall health and the status of the storage backend.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
from fastapi import APIRouter, Request

from formbridge.api.version import API_VERSION

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Check the health of the storage backend.

    Returns:
        JSON object with overall status and per-service health:
        {
            "status": "healthy" | "unhealthy",
            "services": {"storage": "up" | "down"},
            "storage_backend": "memory" | "redis",
            "version": "0.3.0"
        }
    """
    services: dict[str, str] = {}
    redis_client = getattr(request.app.state, "redis_client", None)

    if redis_client is None:
        services["storage"] = "up"
    else:
        try:
            await redis_client.ping()
            services["storage"] = "up"
        except (aioredis.RedisError, ConnectionError, OSError):
            logger.warning("Redis health check failed")
            services["storage"] = "down"

    status = "healthy" if all(s == "up" for s in services.values()) else "unhealthy"
    return {
        "status": status,
        "services": services,
        "storage_backend": "redis" if redis_client is not None else "memory",
        "version": API_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }
