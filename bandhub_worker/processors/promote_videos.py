"""Promote staged videos that have a band into the public catalog."""

import logging
from typing import Optional

from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.processors.categorizer import categorize
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import PostgresRepository

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 50


class PromoteVideosProcessor(BaseProcessor):
    """
    Copies matched staged videos into `videos`.

    A staged row whose youtube id is already public is skipped but still
    marked promoted, so it is not picked up again.
    """

    job_type = JobType.PROMOTE_VIDEOS.value

    def __init__(self, store: JobStore, repository: PostgresRepository):
        super().__init__(store)
        self.repository = repository

    async def process(self, job: Job) -> dict:
        limit: Optional[int] = job.data.get("limit")
        logger.info(f"Starting video promotion (triggered by: {job.data.get('triggered_by', 'system')})")

        result = StageResult(stage=self.job_type)
        staged = await self.repository.get_promotable_videos(limit)
        logger.info(f"Found {len(staged)} videos ready for promotion")

        if not staged:
            result.details["promoted"] = 0
            return result.finish().to_dict()

        await self.report_progress(job, "promoting", 0, len(staged), f"Promoting {len(staged)} videos")
        category_ids: dict[str, Optional[str]] = {}

        for index, video in enumerate(staged):
            result.processed += 1
            try:
                if await self.repository.video_exists(video.youtube_id):
                    result.skipped += 1
                    await self.repository.mark_promoted(video.id)
                    continue

                slug = categorize(video.title, video.description)
                if slug not in category_ids:
                    category_ids[slug] = await self.repository.get_category_id(slug)

                await self.repository.insert_video(video, category_ids[slug])
                await self.repository.mark_promoted(video.id)
                result.succeeded += 1
            except Exception as e:
                logger.error(f"Error promoting video {video.youtube_id}: {e}")
                result.record_failure(video.youtube_id, e)

            if (index + 1) % PROGRESS_EVERY == 0:
                await self.report_progress(
                    job, "promoting", index + 1, len(staged),
                    f"Promoted {index + 1}/{len(staged)} videos",
                )

        result.details["promoted"] = result.succeeded
        result.finish()
        logger.info(
            f"Completed video promotion: {result.processed} processed, "
            f"{result.succeeded} promoted, {result.skipped} skipped",
            extra={"duration_ms": result.duration_ms},
        )
        return result.to_dict()
