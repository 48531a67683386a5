"""Metrics endpoint for monitoring and observability."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from bandhub_worker.monitoring.quota_tracker import QuotaStatus
from bandhub_worker.queue.worker import WorkerStack
from bandhub_worker.routes import get_stack
from bandhub_worker.services.circuit_breaker import CircuitState

router = APIRouter(prefix="/metrics", tags=["metrics"])
logger = logging.getLogger(__name__)

CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _quota_dict(stack: WorkerStack) -> dict:
    quota = stack.quota.check_quota()
    return {
        "status": quota.status.value,
        "message": quota.message,
        "daily_used": quota.daily_used,
        "daily_limit": quota.daily_limit,
        "daily_remaining": quota.daily_remaining,
    }


@router.get("")
async def get_metrics(stack: WorkerStack = Depends(get_stack)):
    """
    Get current metrics for monitoring.

    Returns:
        Queue depths, priority distribution, featured cache size,
        circuit breaker and quota status
    """
    base = {
        "timestamp": _now(),
        "featured_bands": {
            "count": stack.featured.size,
            "last_refreshed_at": (
                stack.featured.last_refreshed_at.isoformat()
                if stack.featured.last_refreshed_at else None
            ),
        },
        "circuit_breaker": stack.breaker.metrics(),
        "quota": _quota_dict(stack),
    }

    try:
        redis_connected = await stack.store.connect()
        if not redis_connected:
            return {**base, "redis_connected": False, "queues": {"error": "Redis unavailable"}}

        depths = await stack.reporter.get_queue_depths()
        return {
            **base,
            "redis_connected": True,
            "queues": {
                "depths": depths,
                "total_pending": sum(
                    counts.get("waiting", 0) + counts.get("delayed", 0) for counts in depths.values()
                ),
            },
            "priorities": await stack.reporter.get_priority_metrics(),
        }
    except Exception as e:
        logger.error(f"Failed to get metrics: {e}")
        return {**base, "error": str(e), "queues": {"error": "Redis unavailable"}}


@router.get("/prometheus", response_class=PlainTextResponse)
async def get_prometheus_metrics(stack: WorkerStack = Depends(get_stack)):
    """Metrics in Prometheus exposition format."""
    try:
        redis_connected = await stack.store.connect()
        depths = await stack.reporter.get_queue_depths() if redis_connected else {}

        lines = [
            "# HELP bandhub_queue_jobs Number of jobs per queue and state",
            "# TYPE bandhub_queue_jobs gauge",
        ]
        for queue, counts in depths.items():
            for state, count in counts.items():
                lines.append(f'bandhub_queue_jobs{{queue="{queue}",state="{state}"}} {count}')

        if redis_connected:
            totals = (await stack.reporter.get_priority_metrics())["totals"]
            lines.extend([
                "",
                "# HELP bandhub_jobs_by_priority Sampled pending and active jobs per priority tier",
                "# TYPE bandhub_jobs_by_priority gauge",
            ])
            for tier in ("critical", "high", "normal", "low"):
                lines.append(f'bandhub_jobs_by_priority{{tier="{tier}"}} {totals[tier]}')

        quota = stack.quota.check_quota()
        lines.extend([
            "",
            "# HELP bandhub_redis_connected Whether Redis is connected (1=yes, 0=no)",
            "# TYPE bandhub_redis_connected gauge",
            f"bandhub_redis_connected {1 if redis_connected else 0}",
            "",
            "# HELP bandhub_featured_bands Featured bands in the priority cache",
            "# TYPE bandhub_featured_bands gauge",
            f"bandhub_featured_bands {stack.featured.size}",
            "",
            "# HELP bandhub_youtube_circuit_state YouTube circuit (0=closed, 1=half-open, 2=open)",
            "# TYPE bandhub_youtube_circuit_state gauge",
            f"bandhub_youtube_circuit_state {CIRCUIT_STATE_VALUES[stack.breaker.state]}",
            "",
            "# HELP bandhub_youtube_quota_used_units YouTube quota units used today",
            "# TYPE bandhub_youtube_quota_used_units gauge",
            f"bandhub_youtube_quota_used_units {quota.daily_used}",
            "",
            "# HELP bandhub_youtube_quota_exceeded Whether the daily quota is exhausted (1=yes, 0=no)",
            "# TYPE bandhub_youtube_quota_exceeded gauge",
            f"bandhub_youtube_quota_exceeded {1 if quota.status == QuotaStatus.EXCEEDED else 0}",
            "",
        ])
        return "\n".join(lines)
    except Exception as e:
        return f"# Error getting metrics: {e}\n"
