"""Health check endpoints."""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from bandhub_worker.queue.worker import WorkerStack
from bandhub_worker.routes import get_stack

router = APIRouter()
logger = logging.getLogger(__name__)

CHECK_TIMEOUT_SECONDS = 5.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
async def health_check():
    """Basic health check - always returns ok if service is running."""
    return {
        "status": "ok",
        "timestamp": _now(),
        "service": "bandhub-worker",
        "version": "0.1.0",
    }


@router.get("/ready")
async def readiness_check(stack: WorkerStack = Depends(get_stack)):
    """
    Readiness check including all dependencies.
    Returns detailed status of each connection.
    """
    checks = {
        "redis": await _check_redis(stack),
        "postgres": await _check_postgres(stack),
    }
    overall_status = "ok" if all(c["status"] == "ok" for c in checks.values()) else "degraded"

    redis_url = stack.settings.redis_url
    return {
        "status": overall_status,
        "timestamp": _now(),
        "checks": checks,
        "config": {
            "environment": stack.settings.environment,
            "redis_url": redis_url.split("@")[-1] if "@" in redis_url else redis_url,
        },
    }


async def _check_redis(stack: WorkerStack) -> dict:
    try:
        connected = await asyncio.wait_for(stack.store.connect(), timeout=CHECK_TIMEOUT_SECONDS)
        return {"status": "ok"} if connected else {"status": "error", "error": "Redis unavailable"}
    except asyncio.TimeoutError:
        return {"status": "timeout", "error": "Connection timed out"}
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"status": "error", "error": str(e)}


async def _check_postgres(stack: WorkerStack) -> dict:
    try:
        ok = await asyncio.wait_for(stack.repository.ping(), timeout=CHECK_TIMEOUT_SECONDS)
        return {"status": "ok"} if ok else {"status": "error", "error": "Database unavailable"}
    except asyncio.TimeoutError:
        return {"status": "timeout", "error": "Connection timed out"}
    except Exception as e:
        logger.warning(f"Postgres health check failed: {e}")
        return {"status": "error", "error": str(e)}
