"""Fan-out of one sync-band job per active band.

Bands are queued in steps of `batch_size`: every step gets a priority one
ordinal lower than the previous step and starts one minute later, which
spreads the YouTube API load over time. This processor never syncs itself.
"""

import logging
import math

from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobPriority, JobType, QueueName, SyncMode
from bandhub_worker.services.queue_service import QueueService
from bandhub_worker.services.repository import PostgresRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
STEP_DELAY_MS = 60_000


class SyncAllBandsProcessor(BaseProcessor):
    job_type = JobType.SYNC_ALL_BANDS.value

    def __init__(self, store: JobStore, repository: PostgresRepository):
        super().__init__(store)
        self.repository = repository

    async def process(self, job: Job) -> dict:
        mode = job.data.get("mode", SyncMode.INCREMENTAL.value)
        triggered_by = job.data.get("triggered_by", "system")
        batch_size = max(int(job.data.get("batch_size") or DEFAULT_BATCH_SIZE), 1)

        logger.info(f"Starting sync for all bands (mode: {mode}, triggered by: {triggered_by})")
        result = StageResult(stage=self.job_type)

        bands = await self.repository.get_active_bands()
        logger.info(f"Found {len(bands)} active bands to sync")

        for index, band in enumerate(bands):
            step = index // batch_size
            options = QueueService.build_options(
                QueueName.VIDEO_SYNC,
                JobPriority.NORMAL + step,
                {
                    "delay_ms": step * STEP_DELAY_MS,
                    "attempts": 3,
                    "backoff": {"type": "exponential", "delay_ms": 30_000},
                },
            )
            data = {
                "band_id": band.id,
                "mode": mode,
                "triggered_by": "system",
            }
            await self.store.enqueue(QueueName.VIDEO_SYNC.value, JobType.SYNC_BAND.value, data, options)
            result.processed += 1
            result.succeeded += 1

        await self.report_progress(job, "queued", 100, 100, f"Queued {len(bands)} band sync jobs")

        result.details = {
            "bands_queued": len(bands),
            "batch_size": batch_size,
            "estimated_duration_ms": math.ceil(len(bands) / batch_size) * STEP_DELAY_MS,
        }
        return result.finish().to_dict()
