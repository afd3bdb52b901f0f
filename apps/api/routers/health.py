"""Health check router: liveness + readiness.

Readiness pings the Redis broker with a short timeout; queued parses are
the only thing that depends on it, so a Redis outage reports ``degraded``
rather than failing the probe.
"""

import asyncio

import redis
import structlog
from fastapi import APIRouter

from apps.api.core.config import settings

router = APIRouter(tags=["health"])
logger = structlog.get_logger()

REDIS_TIMEOUT_SECONDS = 2


@router.get("/health")
async def health_liveness():
    """Liveness probe: returns 200 if the API process is running."""
    return {"status": "healthy", "service": "api", "version": settings.APP_VERSION}


@router.get("/health/ready")
async def health_readiness():
    """Readiness probe: checks Redis connectivity."""
    status = {
        "status": "healthy",
        "services": {
            "api": "up",
            "redis": "unknown",
        },
    }

    try:
        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=REDIS_TIMEOUT_SECONDS)
        loop = asyncio.get_running_loop()
        pong = await asyncio.wait_for(
            loop.run_in_executor(None, r.ping),
            timeout=REDIS_TIMEOUT_SECONDS,
        )
        status["services"]["redis"] = "up" if pong else "down"
    except asyncio.TimeoutError:
        status["services"]["redis"] = "timeout"
        logger.warning("redis_health_timeout", timeout_s=REDIS_TIMEOUT_SECONDS)
    except redis.RedisError as e:
        status["services"]["redis"] = "down"
        logger.warning("redis_health_failed", error=str(e))

    if status["services"]["redis"] != "up":
        status["status"] = "degraded"
    return status
