"""Per-band trending metrics and rankings."""

import logging
import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from bandhub_worker.processors.base import BaseProcessor, StageResult
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobType
from bandhub_worker.services.repository import BandActivity, BandMetrics, PostgresRepository

logger = logging.getLogger(__name__)

WEIGHTS = {
    "views_this_week": 0.35,
    "recent_uploads": 0.20,
    "total_favorites": 0.15,
    "total_followers": 0.10,
    "total_shares": 0.10,
    "avg_video_views": 0.10,
}

TREND_THRESHOLD_PERCENT = 10


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    STABLE = "STABLE"
    NEW = "NEW"


def calculate_trending_score(
    views_this_week: float,
    recent_uploads: int,
    total_favorites: int,
    total_followers: int,
    total_shares: int,
    avg_video_views: float,
) -> float:
    """Weighted blend of log-scaled engagement, rounded to 2 decimals."""
    score = (
        math.log10(views_this_week + 1) * WEIGHTS["views_this_week"]
        + recent_uploads * 10 * WEIGHTS["recent_uploads"]
        + math.log10(total_favorites + 1) * WEIGHTS["total_favorites"]
        + math.log10(total_followers + 1) * WEIGHTS["total_followers"]
        + math.log10(total_shares + 1) * WEIGHTS["total_shares"]
        + math.log10(avg_video_views + 1) * WEIGHTS["avg_video_views"]
    )
    return round(score, 2)


def determine_trend_direction(current_score: float, previous_score: Optional[float]) -> TrendDirection:
    if not previous_score:
        return TrendDirection.NEW
    change = (current_score - previous_score) / previous_score * 100
    if change > TREND_THRESHOLD_PERCENT:
        return TrendDirection.UP
    if change < -TREND_THRESHOLD_PERCENT:
        return TrendDirection.DOWN
    return TrendDirection.STABLE


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def compute_band_metrics(activity: BandActivity, now: datetime) -> BandMetrics:
    """Aggregate a band's raw activity. Time windows are by publish date."""
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    videos = [(_as_utc(published_at), views) for published_at, views in activity.videos]
    total_views = sum(views for _, views in videos)
    video_count = len(videos)
    avg_views = total_views / video_count if video_count else 0.0

    metrics = BandMetrics(
        band_id=activity.band_id,
        total_views=total_views,
        views_today=sum(views for published, views in videos if published > day_ago),
        views_this_week=sum(views for published, views in videos if published > week_ago),
        views_this_month=sum(views for published, views in videos if published > month_ago),
        total_favorites=activity.favorites,
        total_followers=activity.followers,
        total_shares=activity.shares,
        video_count=video_count,
        recent_uploads=sum(1 for published, _ in videos if published > week_ago),
        avg_video_views=avg_views,
        last_calculated=now,
    )
    metrics.trending_score = calculate_trending_score(
        metrics.views_this_week,
        metrics.recent_uploads,
        metrics.total_favorites,
        metrics.total_followers,
        metrics.total_shares,
        metrics.avg_video_views,
    )
    return metrics


class TrendingMetricsProcessor(BaseProcessor):
    job_type = JobType.CALCULATE_TRENDING.value

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
        logger.info(f"Processing trending metrics job {job.id}")
        now = self._clock()
        result = StageResult(stage=self.job_type)
        directions = {direction.value: 0 for direction in TrendDirection}

        for activity in await self.repository.get_band_activity():
            result.processed += 1
            try:
                metrics = compute_band_metrics(activity, now)
                previous = await self.repository.get_band_metrics(activity.band_id)

                metrics.trend_direction = determine_trend_direction(
                    metrics.trending_score,
                    previous.trending_score if previous else None,
                ).value
                metrics.previous_rank = previous.current_rank if previous else None

                await self.repository.upsert_band_metrics(metrics)
                directions[metrics.trend_direction] += 1
                result.succeeded += 1
            except Exception as e:
                logger.error(f"Error updating trending metrics for band {activity.band_id}: {e}")
                result.record_failure(activity.band_id, e)

        ranked = await self.repository.update_rankings()
        logger.info(f"Trending metrics updated for {result.succeeded} bands, {ranked} ranked")

        result.details = {"ranked": ranked, "trends": directions}
        return result.finish().to_dict()
