"""Backfill every band's official channel history into the staging table."""

import logging
from typing import Optional

from bandhub_worker.errors import YouTubeQuotaExceededError
from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.processors.categorizer import assess
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import Band, PostgresRepository
from bandhub_worker.services.youtube import YouTubeClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 20
PAGE_SIZE = 50


class BackfillBandsProcessor(BaseProcessor):
    """
    Pages through each band channel, oldest history included, and stages
    every video with the band already attached.

    Unlike sync-band nothing is queued per video; the upsert is idempotent so
    a rerun only refreshes statistics. Quota exhaustion ends the run early
    with what was staged so far.
    """

    job_type = JobType.BACKFILL_BANDS.value

    def __init__(self, store: JobStore, repository: PostgresRepository, youtube: YouTubeClient):
        super().__init__(store)
        self.repository = repository
        self.youtube = youtube

    async def process(self, job: Job) -> dict:
        band_ids: Optional[list[str]] = job.data.get("band_ids")
        max_pages = int(job.data.get("max_pages") or DEFAULT_MAX_PAGES)

        bands = [
            band for band in await self.repository.get_active_bands()
            if band.youtube_channel_id and (not band_ids or band.id in band_ids)
        ]
        logger.info(f"Starting channel backfill for {len(bands)} bands (up to {max_pages} pages each)")

        result = StageResult(stage=self.job_type)
        result.details = {"bands": len(bands), "bands_completed": 0, "created": 0, "quota_exhausted": False}

        for index, band in enumerate(bands):
            await self.report_progress(job, "backfilling", index, len(bands), f"Backfilling {band.name}")
            try:
                await self._backfill_band(band, max_pages, result)
                result.details["bands_completed"] += 1
            except YouTubeQuotaExceededError:
                logger.error("YouTube quota exceeded, stopping backfill")
                result.details["quota_exhausted"] = True
                result.errors.append("YouTube API quota exceeded")
                break
            except Exception as e:
                logger.error(f"Backfill failed for band {band.name}: {e}", extra={"band_id": band.id})
                result.record_failure(f"band {band.id}", e)

        result.finish()
        logger.info(
            f"Completed channel backfill: {result.details['bands_completed']}/{len(bands)} bands, "
            f"{result.processed} videos, {result.details['created']} new",
            extra={"duration_ms": result.duration_ms},
        )
        return result.to_dict()

    async def _backfill_band(self, band: Band, max_pages: int, result: StageResult) -> None:
        page_token = None
        for _ in range(max_pages):
            listing = await self.youtube.get_channel_videos(
                band.youtube_channel_id, max_results=PAGE_SIZE, page_token=page_token
            )
            for video in listing.videos:
                result.processed += 1
                assessment = assess(video.title, video.description, None, video.view_count)
                if await self.repository.upsert_staged_video(band.id, video.to_dict(), assessment.quality_score):
                    result.details["created"] += 1
                result.succeeded += 1

            page_token = listing.next_page_token
            if not page_token:
                break
