"""Store one fetched video in the staging table with its quality score."""

import logging

from bandhub_worker.errors import TerminalError
from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.processors.categorizer import assess
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import PostgresRepository

logger = logging.getLogger(__name__)


class ProcessVideoProcessor(BaseProcessor):
    job_type = JobType.PROCESS_VIDEO.value

    def __init__(self, store: JobStore, repository: PostgresRepository):
        super().__init__(store)
        self.repository = repository

    async def process(self, job: Job) -> dict:
        video = job.data.get("video")
        if not isinstance(video, dict) or not video.get("id"):
            raise TerminalError(f"Job {job.id} carries no video metadata")

        band_id = job.data.get("band_id")
        assessment = assess(
            video.get("title", ""),
            video.get("description", ""),
            video.get("tags"),
            int(video.get("view_count", 0) or 0),
        )

        result = StageResult(stage=self.job_type, processed=1)
        is_new = await self.repository.upsert_staged_video(band_id, video, assessment.quality_score)
        result.succeeded = 1

        logger.debug(
            f"{'Staged' if is_new else 'Refreshed'} video {video['id']} "
            f"(quality {assessment.quality_score}, {assessment.category})",
            extra={"band_id": band_id, "job_id": job.id},
        )

        result.details = {
            "youtube_id": video["id"],
            "band_id": band_id,
            "created": is_new,
            "category": assessment.category,
            "quality_score": assessment.quality_score,
        }
        return result.finish().to_dict()
