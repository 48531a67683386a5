"""Refresh view and like counts of the most recent public videos."""

import logging

from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import PostgresRepository
from bandhub_worker.services.youtube import YouTubeClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class UpdateStatsProcessor(BaseProcessor):
    job_type = JobType.UPDATE_STATS.value

    def __init__(self, store: JobStore, repository: PostgresRepository, youtube: YouTubeClient):
        super().__init__(store)
        self.repository = repository
        self.youtube = youtube

    async def process(self, job: Job) -> dict:
        batch_size = int(job.data.get("batch_size") or DEFAULT_BATCH_SIZE)
        result = StageResult(stage=self.job_type)

        youtube_ids = await self.repository.get_recent_public_youtube_ids(batch_size)
        if not youtube_ids:
            return result.finish().to_dict()

        # Quota errors propagate: the job's own retry policy handles them
        details = await self.youtube.get_video_details(youtube_ids)
        by_id = {video.id: video for video in details}

        for youtube_id in youtube_ids:
            result.processed += 1
            video = by_id.get(youtube_id)
            if video is None:
                # Removed or made private on YouTube; cleanup deals with it
                result.skipped += 1
                continue
            try:
                await self.repository.update_video_statistics(youtube_id, video.view_count, video.like_count)
                result.succeeded += 1
            except Exception as e:
                result.record_failure(youtube_id, e)

        logger.info(
            f"Updated stats for {result.succeeded}/{len(youtube_ids)} videos ({result.skipped} missing on YouTube)"
        )
        return result.finish().to_dict()
