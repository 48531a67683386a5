"""Priority distribution and queue depth reporting."""

import logging
from typing import Optional

from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobPriority, JobState, QueueName

logger = logging.getLogger(__name__)

# How many jobs per state are sampled for the distribution
SAMPLE_LIMITS = {
    JobState.WAITING: 1000,
    JobState.ACTIVE: 100,
    JobState.DELAYED: 1000,
}

TIERS = (JobPriority.CRITICAL, JobPriority.HIGH, JobPriority.NORMAL, JobPriority.LOW)


def empty_distribution() -> dict[str, int]:
    dist = {tier.name.lower(): 0 for tier in TIERS}
    dist["total"] = 0
    return dist


def calculate_distribution(jobs: list[Job]) -> dict[str, int]:
    """Count jobs per priority tier. Staggered ordinals fall into the tier they do not exceed."""
    dist = empty_distribution()
    dist["total"] = len(jobs)
    for job in jobs:
        dist[JobPriority.bucket(job.priority).name.lower()] += 1
    return dist


class MetricsReporter:
    """Reads the job store and summarises it for dashboards."""

    def __init__(self, store: JobStore, queues: Optional[list[QueueName]] = None):
        self.store = store
        self.queues = queues or list(QueueName)

    async def get_priority_distribution(self) -> list[dict]:
        stats = []
        for queue in self.queues:
            entry: dict = {"queue_name": queue.value}
            for state, limit in SAMPLE_LIMITS.items():
                jobs = await self.store.get_jobs(queue.value, [state], 0, limit - 1)
                entry[state.value] = calculate_distribution(jobs)
            stats.append(entry)
        return stats

    async def get_priority_metrics(self) -> dict:
        """
        Aggregated priority metrics for the dashboard.

        Returns:
            by_queue: per-queue distributions
            totals: tier counts summed over queues and states
            percentages: share of each tier, rounded to whole percent
        """
        by_queue = await self.get_priority_distribution()

        totals = empty_distribution()
        for queue_stats in by_queue:
            for state in SAMPLE_LIMITS:
                for key, value in queue_stats[state.value].items():
                    totals[key] += value

        total = totals["total"] or 1
        percentages = {
            tier.name.lower(): round(totals[tier.name.lower()] / total * 100)
            for tier in TIERS
        }

        return {
            "by_queue": by_queue,
            "totals": totals,
            "percentages": percentages,
        }

    async def get_queue_depths(self) -> dict[str, dict[str, int]]:
        return {queue.value: await self.store.get_job_counts(queue.value) for queue in self.queues}

    async def get_recent_stage_results(self, queue: QueueName, limit: int = 10) -> list[dict]:
        """Return values of the most recently completed jobs of a queue."""
        jobs = await self.store.get_jobs(queue.value, [JobState.COMPLETED], 0, limit - 1)
        return [
            {
                "job_id": job.id,
                "job_type": job.name,
                "finished_at": job.finished_at.isoformat() if job.finished_at else None,
                "result": job.return_value,
            }
            for job in jobs
        ]
