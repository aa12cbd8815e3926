"""Health check endpoints for the webhook receiver."""

import time
from typing import Any

from fastapi import APIRouter, Request

from conduit.core.config.settings import settings
from conduit.persistence.redis.redis_manager import RedisManager
from conduit.workers.queues import QUEUES

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.version,
        "environment": settings.environment,
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request) -> dict[str, Any]:
    """Broker status and queue depths."""
    start_time = time.time()

    queue = getattr(request.app.state, "job_queue", None)
    depths: dict[str, int] = {}
    if queue is not None:
        for name in QUEUES:
            depths[name] = await queue.size(name)

    redis_status = (
        await RedisManager.get_health_status()
        if RedisManager.is_initialized()
        else {"status": "not_configured"}
    )

    return {
        "status": "healthy" if queue is not None else "degraded",
        "timestamp": time.time(),
        "response_time_ms": round((time.time() - start_time) * 1000, 2),
        "application": {
            "name": "Conduit",
            "version": settings.version,
            "environment": settings.environment,
            "is_development": settings.is_development,
        },
        "redis": redis_status,
        "queues": depths,
    }
