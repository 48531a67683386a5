"""Attach unmatched staged videos to the band (and battle opponent) they show."""

import logging
from collections import Counter
from typing import Optional

from bandhub_worker.processors.band_matcher import ALL_STAR, build_profile, exclusion_reason, is_battle, match_bands
from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import PostgresRepository

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 30
PROGRESS_EVERY = 100


class MatchVideosProcessor(BaseProcessor):
    """
    Runs between sync and promotion: promotion only picks up staged rows
    that have a band.

    Excluded, unmatched and low-confidence videos are counted as skipped and
    stay unmatched, so a later run with new bands can still pick them up.
    """

    job_type = JobType.MATCH_VIDEOS.value

    def __init__(self, store: JobStore, repository: PostgresRepository):
        super().__init__(store)
        self.repository = repository

    async def process(self, job: Job) -> dict:
        limit: Optional[int] = job.data.get("limit")
        min_confidence = int(job.data.get("min_confidence") or DEFAULT_MIN_CONFIDENCE)
        logger.info(
            f"Starting video matching (triggered by: {job.data.get('triggered_by', 'system')}, "
            f"min confidence: {min_confidence})"
        )

        result = StageResult(stage=self.job_type)
        counts: Counter = Counter()
        excluded: Counter = Counter()

        profiles = [build_profile(band) for band in await self.repository.get_active_bands()]
        if profiles:
            videos = await self.repository.get_unmatched_staged_videos(limit)
        else:
            logger.warning("No active bands to match against")
            videos = []
        logger.info(f"Matching {len(videos)} unmatched videos against {len(profiles)} bands")

        if videos:
            await self.report_progress(job, "matching", 0, len(videos), f"Matching {len(videos)} videos")

        for index, video in enumerate(videos):
            result.processed += 1
            text = " ".join(filter(None, (video.title, video.description, video.channel_title)))

            reason = exclusion_reason(text)
            if reason:
                excluded[reason] += 1
                result.skipped += 1
                continue

            matches = match_bands(text, profiles)
            if not matches:
                counts["no_match"] += 1
                result.skipped += 1
                continue

            top = matches[0]
            if top.score < min_confidence:
                counts["low_confidence"] += 1
                result.skipped += 1
                continue

            opponent_id = None
            if is_battle(text):
                opponent = next((m for m in matches[1:] if m.band_id != top.band_id), None)
                if opponent is not None and opponent.score >= min_confidence:
                    opponent_id = opponent.band_id

            try:
                await self.repository.assign_band(video.id, top.band_id, opponent_id, top.score)
                result.succeeded += 1
                counts["matched_all_star" if top.band_type == ALL_STAR else "matched_hbcu"] += 1
                counts["battle_videos" if opponent_id else "single_band"] += 1
            except Exception as e:
                logger.error(f"Error matching video {video.youtube_id}: {e}")
                result.record_failure(video.youtube_id, e)

            if (index + 1) % PROGRESS_EVERY == 0:
                await self.report_progress(
                    job, "matching", index + 1, len(videos),
                    f"Processed {index + 1}/{len(videos)} videos",
                )

        result.details = {
            "matched_hbcu": counts["matched_hbcu"],
            "matched_all_star": counts["matched_all_star"],
            "single_band": counts["single_band"],
            "battle_videos": counts["battle_videos"],
            "no_match": counts["no_match"],
            "low_confidence": counts["low_confidence"],
            "excluded": sum(excluded.values()),
            "excluded_by_reason": dict(excluded),
            "min_confidence": min_confidence,
        }
        result.finish()

        rate = result.succeeded / result.processed * 100 if result.processed else 0.0
        logger.info(
            f"Completed video matching: {result.processed} processed, {result.succeeded} matched "
            f"({rate:.1f}%), {result.details['excluded']} excluded, {counts['no_match']} no match",
            extra={"duration_ms": result.duration_ms},
        )
        return result.to_dict()
