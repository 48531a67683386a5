"""Postgres repository for the catalog tables the worker reads and writes.

Tables: bands, videos (public catalog), youtube_videos (staged fetches),
categories, sync_jobs, favorite_bands, band_shares, band_metrics.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from bandhub_worker.config import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Models
# =============================================================================


@dataclass
class Band:
    """Row of the bands table."""
    id: str
    name: str
    slug: str = ""
    school_name: Optional[str] = None
    youtube_channel_id: Optional[str] = None
    youtube_playlist_ids: list[str] = field(default_factory=list)
    last_sync_at: Optional[datetime] = None
    sync_status: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    band_type: str = "HBCU"  # or ALL_STAR


@dataclass
class StagedVideo:
    """Row of the youtube_videos staging table."""
    id: str
    youtube_id: str
    title: str
    band_id: Optional[str]
    published_at: datetime
    description: Optional[str] = None
    channel_title: Optional[str] = None
    thumbnail_url: str = ""
    url: str = ""
    duration: int = 0
    view_count: int = 0
    like_count: int = 0
    quality_score: int = 0
    is_promoted: bool = False


@dataclass
class BandActivity:
    """Raw inputs for a band's trending metrics."""
    band_id: str
    videos: list[tuple[datetime, int]] = field(default_factory=list)  # (published_at, view_count)
    favorites: int = 0
    followers: int = 0
    shares: int = 0


@dataclass
class BandMetrics:
    """Row of the band_metrics table."""
    band_id: str
    total_views: int = 0
    views_today: int = 0
    views_this_week: int = 0
    views_this_month: int = 0
    total_favorites: int = 0
    total_followers: int = 0
    total_shares: int = 0
    video_count: int = 0
    recent_uploads: int = 0
    avg_video_views: float = 0.0
    trending_score: float = 0.0
    trend_direction: str = "NEW"
    current_rank: Optional[int] = None
    previous_rank: Optional[int] = None
    last_calculated: Optional[datetime] = None


def _new_id() -> str:
    return uuid.uuid4().hex


def _count(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 12'."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


# =============================================================================
# Repository
# =============================================================================


class PostgresRepository:
    """asyncpg-backed access to the catalog."""

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    async def connect(self, database_url: Optional[str] = None) -> None:
        if self._pool is not None:
            return
        settings = get_settings()
        self._pool = await asyncpg.create_pool(
            database_url or settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            timeout=10,
            command_timeout=30,
        )
        logger.info("Database pool initialized")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized")
        return self._pool

    async def ping(self) -> bool:
        try:
            await self.pool.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    # ==================== Bands ====================

    async def get_featured_band_ids(self) -> list[str]:
        rows = await self.pool.fetch("SELECT id FROM bands WHERE is_featured = true")
        return [row["id"] for row in rows]

    async def get_active_bands(self) -> list[Band]:
        """Active bands, least recently synced first."""
        rows = await self.pool.fetch(
            """
            SELECT id, name, slug, school_name, youtube_channel_id, youtube_playlist_ids,
                   last_sync_at, sync_status, is_active, is_featured, band_type
            FROM bands
            WHERE is_active = true
            ORDER BY last_sync_at ASC NULLS FIRST
            """
        )
        return [self._row_to_band(row) for row in rows]

    async def get_band(self, band_id: str) -> Optional[Band]:
        row = await self.pool.fetchrow(
            """
            SELECT id, name, slug, school_name, youtube_channel_id, youtube_playlist_ids,
                   last_sync_at, sync_status, is_active, is_featured, band_type
            FROM bands WHERE id = $1
            """,
            band_id,
        )
        return self._row_to_band(row) if row else None

    @staticmethod
    def _row_to_band(row) -> Band:
        return Band(
            id=row["id"],
            name=row["name"],
            slug=row["slug"] or "",
            school_name=row["school_name"],
            youtube_channel_id=row["youtube_channel_id"],
            youtube_playlist_ids=list(row["youtube_playlist_ids"] or []),
            last_sync_at=row["last_sync_at"],
            sync_status=row["sync_status"],
            is_active=row["is_active"],
            is_featured=row["is_featured"],
            band_type=row["band_type"] or "HBCU",
        )

    async def update_band_sync_status(self, band_id: str, status: str, last_sync_at: datetime) -> None:
        await self.pool.execute(
            "UPDATE bands SET sync_status = $2, last_sync_at = $3, updated_at = now() WHERE id = $1",
            band_id,
            status,
            last_sync_at,
        )

    # ==================== Sync jobs ====================

    async def ensure_sync_job(self, sync_job_id: str, band_id: Optional[str], job_type: str) -> bool:
        """
        Create the sync_jobs row for a queue job, keyed on the queue job id so
        retries of the same job reuse one row. Returns True if the row is new.
        """
        return bool(await self.pool.fetchval(
            """
            INSERT INTO sync_jobs (id, band_id, job_type, status, created_at, updated_at)
            VALUES ($1, $2, $3, 'QUEUED', now(), now())
            ON CONFLICT (id) DO UPDATE SET status = 'QUEUED', updated_at = now()
            RETURNING (xmax = 0)
            """,
            sync_job_id,
            band_id,
            job_type,
        ))

    async def update_sync_job(
        self,
        sync_job_id: str,
        status: str,
        videos_found: Optional[int] = None,
        videos_added: Optional[int] = None,
        videos_updated: Optional[int] = None,
        errors: Optional[list[str]] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        await self.pool.execute(
            """
            UPDATE sync_jobs SET
                status = $2,
                videos_found = COALESCE($3, videos_found),
                videos_added = COALESCE($4, videos_added),
                videos_updated = COALESCE($5, videos_updated),
                errors = COALESCE($6, errors),
                started_at = COALESCE($7, started_at),
                completed_at = COALESCE($8, completed_at),
                updated_at = now()
            WHERE id = $1
            """,
            sync_job_id,
            status,
            videos_found,
            videos_added,
            videos_updated,
            errors,
            started_at,
            completed_at,
        )

    # ==================== Staged videos ====================

    async def upsert_staged_video(self, band_id: Optional[str], video: dict, quality_score: int) -> bool:
        """Insert or refresh a fetched video. Returns True if the row is new."""
        published_at = video.get("published_at") or datetime.now(timezone.utc)
        if isinstance(published_at, str):
            published_at = datetime.fromisoformat(published_at.replace("Z", "+00:00"))

        inserted = await self.pool.fetchval(
            """
            INSERT INTO youtube_videos (
                id, youtube_id, title, description, thumbnail_url, url, duration,
                published_at, view_count, like_count, channel_id, channel_title,
                band_id, quality_score, sync_status, last_synced_at, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                      'COMPLETED', now(), now(), now())
            ON CONFLICT (youtube_id) DO UPDATE SET
                title = EXCLUDED.title,
                description = EXCLUDED.description,
                view_count = EXCLUDED.view_count,
                like_count = EXCLUDED.like_count,
                band_id = COALESCE(youtube_videos.band_id, EXCLUDED.band_id),
                quality_score = EXCLUDED.quality_score,
                last_synced_at = now(),
                updated_at = now()
            RETURNING (xmax = 0)
            """,
            _new_id(),
            video["id"],
            video.get("title", ""),
            video.get("description") or None,
            video.get("thumbnail_url", ""),
            f"https://www.youtube.com/watch?v={video['id']}",
            int(video.get("duration", 0) or 0),
            published_at,
            int(video.get("view_count", 0) or 0),
            int(video.get("like_count", 0) or 0),
            video.get("channel_id", ""),
            video.get("channel_title") or None,
            band_id,
            quality_score,
        )
        return bool(inserted)

    async def get_promotable_videos(self, limit: Optional[int] = None) -> list[StagedVideo]:
        """Staged videos with a band that are not promoted yet, newest first."""
        rows = await self.pool.fetch(
            """
            SELECT id, youtube_id, title, description, thumbnail_url, url, duration,
                   published_at, view_count, like_count, band_id, quality_score, is_promoted
            FROM youtube_videos
            WHERE band_id IS NOT NULL AND is_promoted = false
            ORDER BY published_at DESC
            LIMIT $1
            """,
            limit,
        )
        return [StagedVideo(**dict(row)) for row in rows]

    async def get_unmatched_staged_videos(self, limit: Optional[int] = None) -> list[StagedVideo]:
        """Staged videos with no band yet, newest first."""
        rows = await self.pool.fetch(
            """
            SELECT id, youtube_id, title, description, channel_title, thumbnail_url, url, duration,
                   published_at, view_count, like_count, band_id, quality_score, is_promoted
            FROM youtube_videos
            WHERE band_id IS NULL
            ORDER BY created_at DESC
            LIMIT $1
            """,
            limit,
        )
        return [StagedVideo(**dict(row)) for row in rows]

    async def assign_band(
        self,
        staged_id: str,
        band_id: str,
        opponent_band_id: Optional[str],
        match_score: int,
    ) -> None:
        await self.pool.execute(
            """
            UPDATE youtube_videos SET
                band_id = $2,
                opponent_band_id = $3,
                quality_score = $4,
                updated_at = now()
            WHERE id = $1
            """,
            staged_id,
            band_id,
            opponent_band_id,
            match_score,
        )

    async def mark_promoted(self, staged_id: str) -> None:
        await self.pool.execute(
            "UPDATE youtube_videos SET is_promoted = true, promoted_at = now(), updated_at = now() WHERE id = $1",
            staged_id,
        )

    # ==================== Public videos ====================

    async def video_exists(self, youtube_id: str) -> bool:
        return bool(await self.pool.fetchval(
            "SELECT EXISTS (SELECT 1 FROM videos WHERE youtube_id = $1)", youtube_id
        ))

    async def get_category_id(self, slug: str) -> Optional[str]:
        return await self.pool.fetchval("SELECT id FROM categories WHERE slug = $1", slug)

    async def insert_video(self, staged: StagedVideo, category_id: Optional[str]) -> str:
        video_id = _new_id()
        await self.pool.execute(
            """
            INSERT INTO videos (
                id, youtube_id, title, description, thumbnail_url, duration, published_at,
                view_count, like_count, band_id, category_id, quality_score, is_hidden,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, false, now(), now())
            """,
            video_id,
            staged.youtube_id,
            staged.title,
            staged.description or "",
            staged.thumbnail_url,
            staged.duration,
            staged.published_at,
            staged.view_count,
            staged.like_count,
            staged.band_id,
            category_id,
            staged.quality_score,
        )
        return video_id

    async def remove_duplicate_videos(self, dry_run: bool = False) -> int:
        """Delete all but the oldest public row per youtube id."""
        duplicates_cte = """
            WITH ranked AS (
                SELECT id, ROW_NUMBER() OVER (PARTITION BY youtube_id ORDER BY created_at ASC) AS rn
                FROM videos
            )
        """
        if dry_run:
            return await self.pool.fetchval(duplicates_cte + "SELECT COUNT(*) FROM ranked WHERE rn > 1")
        status = await self.pool.execute(
            duplicates_cte + "DELETE FROM videos WHERE id IN (SELECT id FROM ranked WHERE rn > 1)"
        )
        return _count(status)

    async def hide_low_quality_videos(self, threshold: int, dry_run: bool = False) -> int:
        if dry_run:
            return await self.pool.fetchval(
                "SELECT COUNT(*) FROM videos WHERE quality_score < $1 AND is_hidden = false", threshold
            )
        status = await self.pool.execute(
            "UPDATE videos SET is_hidden = true, updated_at = now() WHERE quality_score < $1 AND is_hidden = false",
            threshold,
        )
        return _count(status)

    async def hide_stale_videos(self, updated_before: datetime, dry_run: bool = False) -> int:
        if dry_run:
            return await self.pool.fetchval(
                "SELECT COUNT(*) FROM videos WHERE updated_at < $1 AND is_hidden = false", updated_before
            )
        status = await self.pool.execute(
            "UPDATE videos SET is_hidden = true, updated_at = now() WHERE updated_at < $1 AND is_hidden = false",
            updated_before,
        )
        return _count(status)

    async def get_recent_public_youtube_ids(self, limit: int) -> list[str]:
        rows = await self.pool.fetch(
            "SELECT youtube_id FROM videos WHERE is_hidden = false ORDER BY published_at DESC LIMIT $1",
            limit,
        )
        return [row["youtube_id"] for row in rows]

    async def update_video_statistics(self, youtube_id: str, view_count: int, like_count: int) -> None:
        await self.pool.execute(
            "UPDATE videos SET view_count = $2, like_count = $3, updated_at = now() WHERE youtube_id = $1",
            youtube_id,
            view_count,
            like_count,
        )

    # ==================== Trending metrics ====================

    async def get_band_activity(self) -> list[BandActivity]:
        """Per band: published videos with view counts, favourites and shares."""
        activity: dict[str, BandActivity] = {}

        async with self.pool.acquire() as conn:
            for row in await conn.fetch("SELECT id FROM bands"):
                activity[row["id"]] = BandActivity(band_id=row["id"])

            for row in await conn.fetch(
                "SELECT band_id, published_at, view_count FROM videos WHERE band_id IS NOT NULL"
            ):
                if row["band_id"] in activity:
                    activity[row["band_id"]].videos.append((row["published_at"], row["view_count"]))

            for row in await conn.fetch("SELECT band_id, COUNT(*) AS n FROM favorite_bands GROUP BY band_id"):
                if row["band_id"] in activity:
                    activity[row["band_id"]].favorites = row["n"]

            for row in await conn.fetch("SELECT band_id, COUNT(*) AS n FROM band_shares GROUP BY band_id"):
                if row["band_id"] in activity:
                    activity[row["band_id"]].shares = row["n"]

        return list(activity.values())

    async def get_band_metrics(self, band_id: str) -> Optional[BandMetrics]:
        row = await self.pool.fetchrow(
            """
            SELECT band_id, total_views, views_today, views_this_week, views_this_month,
                   total_favorites, total_followers, total_shares, video_count, recent_uploads,
                   avg_video_views, trending_score, trend_direction, current_rank, previous_rank,
                   last_calculated
            FROM band_metrics WHERE band_id = $1
            """,
            band_id,
        )
        return BandMetrics(**dict(row)) if row else None

    async def upsert_band_metrics(self, metrics: BandMetrics) -> None:
        await self.pool.execute(
            """
            INSERT INTO band_metrics (
                id, band_id, total_views, views_today, views_this_week, views_this_month,
                total_favorites, total_followers, total_shares, video_count, recent_uploads,
                avg_video_views, trending_score, trend_direction, previous_rank, last_calculated
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
            ON CONFLICT (band_id) DO UPDATE SET
                total_views = EXCLUDED.total_views,
                views_today = EXCLUDED.views_today,
                views_this_week = EXCLUDED.views_this_week,
                views_this_month = EXCLUDED.views_this_month,
                total_favorites = EXCLUDED.total_favorites,
                total_followers = EXCLUDED.total_followers,
                total_shares = EXCLUDED.total_shares,
                video_count = EXCLUDED.video_count,
                recent_uploads = EXCLUDED.recent_uploads,
                avg_video_views = EXCLUDED.avg_video_views,
                trending_score = EXCLUDED.trending_score,
                trend_direction = EXCLUDED.trend_direction,
                previous_rank = EXCLUDED.previous_rank,
                last_calculated = EXCLUDED.last_calculated
            """,
            _new_id(),
            metrics.band_id,
            metrics.total_views,
            metrics.views_today,
            metrics.views_this_week,
            metrics.views_this_month,
            metrics.total_favorites,
            metrics.total_followers,
            metrics.total_shares,
            metrics.video_count,
            metrics.recent_uploads,
            metrics.avg_video_views,
            metrics.trending_score,
            metrics.trend_direction,
            metrics.previous_rank,
            metrics.last_calculated,
        )

    async def update_rankings(self) -> int:
        """Rank all bands by descending trending score (1 = top)."""
        status = await self.pool.execute(
            """
            UPDATE band_metrics AS m SET current_rank = r.rank
            FROM (
                SELECT band_id, ROW_NUMBER() OVER (ORDER BY trending_score DESC) AS rank
                FROM band_metrics
            ) AS r
            WHERE m.band_id = r.band_id
            """
        )
        return _count(status)
