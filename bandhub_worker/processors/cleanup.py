"""Catalog cleanup: duplicates, low-quality and stale videos."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from dateutil.relativedelta import relativedelta

from bandhub_worker.errors import TerminalError
from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import PostgresRepository

logger = logging.getLogger(__name__)

SCOPES = ("duplicates", "irrelevant", "deleted", "all")
LOW_QUALITY_THRESHOLD = 30
STALE_AFTER = relativedelta(months=6)


class CleanupProcessor(BaseProcessor):
    job_type = JobType.CLEANUP_VIDEOS.value

    def __init__(
        self,
        store: JobStore,
        repository: PostgresRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(store)
        self.repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def process(self, job: Job) -> dict:
        scope = job.data.get("scope", "all")
        dry_run = bool(job.data.get("dry_run", False))
        if scope not in SCOPES:
            raise TerminalError(f"Unknown cleanup scope: {scope}")

        logger.info(f"Starting cleanup (scope: {scope}, dry_run: {dry_run})")
        result = StageResult(stage=self.job_type)
        counts = {"duplicates_removed": 0, "irrelevant_hidden": 0, "deleted_hidden": 0}

        if scope in ("duplicates", "all"):
            counts["duplicates_removed"] = await self.repository.remove_duplicate_videos(dry_run)
            logger.info(f"{'Would remove' if dry_run else 'Removed'} {counts['duplicates_removed']} duplicates")

        if scope in ("irrelevant", "all"):
            counts["irrelevant_hidden"] = await self.repository.hide_low_quality_videos(
                LOW_QUALITY_THRESHOLD, dry_run
            )
            logger.info(f"{'Would hide' if dry_run else 'Hid'} {counts['irrelevant_hidden']} irrelevant videos")

        if scope in ("deleted", "all"):
            # Not refreshed for six months: most likely gone from YouTube
            threshold = self._clock() - STALE_AFTER
            counts["deleted_hidden"] = await self.repository.hide_stale_videos(threshold, dry_run)
            logger.info(f"{'Would hide' if dry_run else 'Hid'} {counts['deleted_hidden']} stale videos")

        await self.report_progress(job, "complete", 100, 100, f"Cleanup complete: {counts}")

        result.processed = sum(counts.values())
        result.succeeded = 0 if dry_run else result.processed
        result.details = {"scope": scope, "dry_run": dry_run, **counts}
        return result.finish().to_dict()
