"""Cron cadence of sync and maintenance jobs.

All times are UTC:
- 02:00 Sunday   weekly full sync of all bands
- 03:00 daily    incremental sync of all bands
- 04:00 daily    matching of staged videos to bands
- 05:00 daily    promotion of matched videos
- 06:00 daily    cleanup of the public catalog
- hh:00 hourly   stats refresh (peak hours only)
- hh:30 hourly   trending metrics

Triggers only submit jobs in production. Each submission uses a date (or
date-and-hour) keyed job id, so a trigger that fires twice in the same period
yields a single job.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from bandhub_worker.config import Settings, get_settings
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobPriority, JobType, QueueName, SyncMode
from bandhub_worker.services.queue_service import QueueService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleEntry:
    """One recurring submission."""
    name: str
    cron: str
    queue: QueueName
    job_type: JobType
    priority: int
    job_id_format: str  # {date} and {hour} are filled in at fire time
    description: str
    data: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    peak_hours_only: bool = False

    def job_id(self, now: datetime) -> str:
        return self.job_id_format.format(date=now.strftime("%Y-%m-%d"), hour=now.strftime("%H"))


SCHEDULE: tuple[ScheduleEntry, ...] = (
    ScheduleEntry(
        name="daily-incremental-sync",
        cron="0 3 * * *",
        queue=QueueName.VIDEO_SYNC,
        job_type=JobType.SYNC_ALL_BANDS,
        priority=JobPriority.NORMAL,
        job_id_format="daily-sync-{date}",
        description="Daily incremental sync: 3:00 AM UTC",
        data={"mode": SyncMode.INCREMENTAL.value, "triggered_by": "schedule", "batch_size": 5},
    ),
    ScheduleEntry(
        name="weekly-full-sync",
        # APScheduler numbers weekdays from Monday, so name the day
        cron="0 2 * * sun",
        queue=QueueName.VIDEO_SYNC,
        job_type=JobType.SYNC_ALL_BANDS,
        priority=JobPriority.LOW,
        job_id_format="weekly-sync-{date}",
        description="Weekly full sync: Sundays at 2:00 AM UTC",
        data={"mode": SyncMode.FULL.value, "triggered_by": "schedule", "batch_size": 3},
    ),
    ScheduleEntry(
        name="daily-matching",
        cron="0 4 * * *",
        queue=QueueName.VIDEO_PROCESSING,
        job_type=JobType.MATCH_VIDEOS,
        priority=JobPriority.NORMAL,
        job_id_format="match-videos-{date}",
        description="Daily matching: 4:00 AM UTC, before promotion",
        data={"triggered_by": "schedule", "min_confidence": 30},
    ),
    ScheduleEntry(
        name="daily-promotion",
        cron="0 5 * * *",
        queue=QueueName.VIDEO_PROCESSING,
        job_type=JobType.PROMOTE_VIDEOS,
        priority=JobPriority.NORMAL,
        job_id_format="promote-videos-{date}",
        description="Daily promotion: 5:00 AM UTC",
        data={"triggered_by": "schedule"},
    ),
    ScheduleEntry(
        name="daily-cleanup",
        cron="0 6 * * *",
        queue=QueueName.MAINTENANCE,
        job_type=JobType.CLEANUP_VIDEOS,
        priority=JobPriority.LOW,
        job_id_format="cleanup-{date}",
        description="Daily cleanup: 6:00 AM UTC",
        data={"scope": "all", "dry_run": False},
        options={"attempts": 1},
    ),
    ScheduleEntry(
        name="hourly-stats",
        cron="0 * * * *",
        queue=QueueName.VIDEO_SYNC,
        job_type=JobType.UPDATE_STATS,
        priority=JobPriority.LOW,
        job_id_format="stats-{date}T{hour}",
        description="Hourly stats update: every hour during peak hours",
        data={"batch_size": 100},
        options={"backoff": {"type": "fixed", "delay_ms": 5_000}},
        peak_hours_only=True,
    ),
    ScheduleEntry(
        name="hourly-trending",
        cron="30 * * * *",
        queue=QueueName.MAINTENANCE,
        job_type=JobType.CALCULATE_TRENDING,
        priority=JobPriority.LOW,
        job_id_format="trending-{date}T{hour}",
        description="Hourly trending metrics: half past every hour",
        data={"triggered_by": "schedule"},
        options={"attempts": 2, "backoff": {"type": "fixed", "delay_ms": 60_000}},
    ),
)


class SyncScheduler:
    """Registers the cadence with APScheduler and submits jobs when it fires."""

    def __init__(
        self,
        store: JobStore,
        queue_service: QueueService,
        settings: Optional[Settings] = None,
        entries: tuple[ScheduleEntry, ...] = SCHEDULE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.queue_service = queue_service
        self.settings = settings or get_settings()
        self.entries = entries
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._scheduler: Optional[AsyncIOScheduler] = None

    def should_run(self, entry: ScheduleEntry, now: datetime) -> bool:
        if not self.settings.is_production:
            logger.debug(f"Skipping {entry.name} in non-production environment")
            return False
        if entry.peak_hours_only:
            hour = now.astimezone(timezone.utc).hour
            if hour < self.settings.peak_hours_start or hour > self.settings.peak_hours_end:
                logger.debug(f"Skipping {entry.name} outside peak hours ({hour}:00 UTC)")
                return False
        return True

    async def trigger(self, entry: ScheduleEntry) -> Optional[Job]:
        """Submit the entry's job for the current period. Never raises."""
        now = self._clock()
        if not self.should_run(entry, now):
            return None

        logger.info(f"Starting {entry.name}")
        try:
            return await self.queue_service.submit_with_priority(
                entry.queue,
                entry.job_type,
                dict(entry.data),
                {**entry.options, "priority": entry.priority, "job_id": entry.job_id(now)},
            )
        except Exception as e:
            logger.error(f"Scheduled submission {entry.name} failed: {e}", exc_info=True)
            return None

    async def purge_repeatables(self) -> int:
        """Remove recurring registrations left behind by previous deployments."""
        removed = 0
        for queue in QueueName:
            for repeatable in await self.store.get_repeatables(queue.value):
                if await self.store.remove_repeatable_by_key(queue.value, repeatable.key):
                    removed += 1
        if removed:
            logger.info(f"Removed {removed} stale repeatable registrations")
        return removed

    async def start(self) -> None:
        await self.purge_repeatables()
        now = self._clock()
        # Created here so it binds to the running event loop
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

        for entry in self.entries:
            trigger = CronTrigger.from_crontab(entry.cron, timezone=timezone.utc)
            self._scheduler.add_job(
                self.trigger,
                trigger=trigger,
                args=[entry],
                id=entry.name,
                name=entry.description,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            await self.store.add_repeatable(
                entry.queue.value,
                entry.job_type.value,
                entry.cron,
                next_run_at=trigger.get_next_fire_time(None, now),
            )

        self._scheduler.start()
        self.log_schedule()

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")

    def log_schedule(self) -> None:
        logger.info(f"Sync scheduler initialized (environment: {self.settings.environment})")
        logger.info("Scheduled jobs:")
        for entry in self.entries:
            logger.info(f"  - {entry.description}")
