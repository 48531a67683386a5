"""Sync one band: search YouTube and queue every new video for processing."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from bandhub_worker.errors import TerminalError, YouTubeQuotaExceededError, YouTubeRateLimitError
from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType, SyncMode
from bandhub_worker.services.queue_service import QueueService
from bandhub_worker.services.repository import Band, PostgresRepository
from bandhub_worker.services.youtube import (
    DEFAULT_PUBLISHED_AFTER,
    YouTubeClient,
    YouTubeSearchResult,
    YouTubeVideo,
)

logger = logging.getLogger(__name__)


def build_search_queries(band: Band) -> list[str]:
    queries = [f'"{band.name}" marching band']
    if band.school_name and band.school_name != band.name:
        queries.append(f'"{band.school_name}" marching band')
    queries.append(f'"{band.name}" HBCU')
    return queries


class SyncBandProcessor(BaseProcessor):
    job_type = JobType.SYNC_BAND.value

    def __init__(
        self,
        store: JobStore,
        repository: PostgresRepository,
        youtube: YouTubeClient,
        queue_service: QueueService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(store)
        self.repository = repository
        self.youtube = youtube
        self.queue_service = queue_service
        self._sleep = sleep

    async def process(self, job: Job) -> dict:
        band_id = job.data.get("band_id")
        mode = job.data.get("mode", SyncMode.INCREMENTAL.value)
        max_results = int(job.data.get("max_results") or 50)

        band = await self.repository.get_band(band_id) if band_id else None
        if band is None:
            raise TerminalError(f"Band not found: {band_id}")

        logger.info(
            f"Starting sync for band {band.name} (mode: {mode}, triggered by: {job.data.get('triggered_by')})",
            extra={"band_id": band_id, "job_id": job.id},
        )

        published_after: Optional[str] = None
        if mode == SyncMode.INCREMENTAL.value and band.last_sync_at:
            published_after = band.last_sync_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        sync_job_id = job.id
        if not await self.repository.ensure_sync_job(sync_job_id, band_id, mode):
            logger.info(
                f"Reusing sync job record for attempt {job.attempts_made}",
                extra={"band_id": band_id, "job_id": job.id},
            )
        started_at = datetime.now(timezone.utc)
        await self.repository.update_sync_job(sync_job_id, "IN_PROGRESS", started_at=started_at)
        await self.repository.update_band_sync_status(band_id, "IN_PROGRESS", started_at)

        result = StageResult(stage=self.job_type)
        seen: set[str] = set()
        quota_exhausted = False

        try:
            queries = build_search_queries(band)
            await self.report_progress(job, "searching", 0, 100, f"Searching YouTube for {band.name} videos")

            for index, query in enumerate(queries):
                search = await self._run_query(query, max_results, published_after, result)
                if search is None:
                    if result.details.get("quota_exhausted"):
                        quota_exhausted = True
                        break
                    continue

                await self._queue_videos(band_id, search.videos, seen, result)
                await self.report_progress(
                    job, "processing", round((index + 1) / len(queries) * 100), 100,
                    f"Processed {len(seen)} videos",
                )

            # Official channel, then curated playlists
            sources = []
            if band.youtube_channel_id:
                sources.append((
                    f"channel {band.youtube_channel_id}",
                    lambda: self.youtube.get_channel_videos(
                        band.youtube_channel_id,
                        max_results=50,
                        published_after=published_after or DEFAULT_PUBLISHED_AFTER,
                    ),
                ))
            for playlist_id in band.youtube_playlist_ids:
                sources.append((
                    f"playlist {playlist_id}",
                    lambda playlist_id=playlist_id: self.youtube.get_playlist_videos(playlist_id, max_results=50),
                ))

            if sources and not quota_exhausted:
                await self.report_progress(job, "channel-fetch", 90, 100, "Fetching from official channel")

            for source_key, fetch in sources:
                if quota_exhausted:
                    break
                try:
                    listing = await fetch()
                    await self._queue_videos(band_id, listing.videos, seen, result)
                except YouTubeQuotaExceededError:
                    quota_exhausted = True
                    result.errors.append("YouTube API quota exceeded")
                except Exception as e:
                    logger.error(f"Fetch failed for {source_key}: {e}")
                    result.record_failure(source_key, e)

            finished_at = datetime.now(timezone.utc)
            await self.repository.update_sync_job(
                sync_job_id,
                "COMPLETED",
                videos_found=len(seen),
                videos_added=result.succeeded,
                videos_updated=0,
                errors=result.errors,
                completed_at=finished_at,
            )
            await self.repository.update_band_sync_status(band_id, "COMPLETED", finished_at)

        except Exception as e:
            logger.error(f"Band sync failed for {band_id}: {e}", extra={"band_id": band_id})
            result.errors.append(str(e))
            failed_at = datetime.now(timezone.utc)
            await self.repository.update_sync_job(
                sync_job_id, "FAILED", errors=result.errors, completed_at=failed_at
            )
            await self.repository.update_band_sync_status(band_id, "FAILED", failed_at)
            raise

        result.details.update({
            "band_id": band_id,
            "band_name": band.name,
            "videos_found": len(seen),
            "quota_exhausted": quota_exhausted,
        })
        result.finish()

        logger.info(
            f"Completed sync for {band.name}: {len(seen)} found, {result.succeeded} queued",
            extra={"band_id": band_id, "duration_ms": result.duration_ms},
        )
        return result.to_dict()

    async def _run_query(
        self,
        query: str,
        max_results: int,
        published_after: Optional[str],
        result: StageResult,
    ) -> Optional[YouTubeSearchResult]:
        """Run one search. A rate-limited query is retried once after the advised wait."""
        kwargs = {"max_results": max_results}
        if published_after:
            kwargs["published_after"] = published_after

        for attempt in range(2):
            try:
                return await self.youtube.search_videos(query, **kwargs)
            except YouTubeQuotaExceededError:
                logger.error("YouTube quota exceeded, stopping sync")
                result.errors.append("YouTube API quota exceeded")
                result.details["quota_exhausted"] = True
                return None
            except YouTubeRateLimitError as e:
                if attempt == 0:
                    logger.warning(f"Rate limited, waiting {e.retry_after}s before retrying \"{query}\"")
                    await self._sleep(e.retry_after)
                    continue
                result.record_failure(f'search "{query}"', e)
                return None
            except Exception as e:
                logger.error(f'Search failed for query "{query}": {e}')
                result.record_failure(f'search "{query}"', e)
                return None
        return None

    async def _queue_videos(
        self,
        band_id: str,
        videos: list[YouTubeVideo],
        seen: set[str],
        result: StageResult,
    ) -> None:
        for video in videos:
            if video.id in seen:
                continue
            seen.add(video.id)
            result.processed += 1

            try:
                await self.queue_service.submit_video_processing({
                    "band_id": band_id,
                    "youtube_id": video.id,
                    "video": video.to_dict(),
                })
                result.succeeded += 1
            except Exception as e:
                logger.error(f"Failed to queue video {video.id}: {e}")
                result.record_failure(f"video {video.id}", e)
