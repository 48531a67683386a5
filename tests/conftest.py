"""Shared fixtures: in-memory repository, stub YouTube client, fakeredis job store."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import fakeredis
import fakeredis.aioredis
import pytest

from bandhub_worker.config import clear_settings_cache
from bandhub_worker.errors import YouTubeQuotaExceededError
from bandhub_worker.priority.featured_cache import FeaturedBandCache
from bandhub_worker.priority.rules import PriorityPolicy
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.services.repository import Band, BandActivity, BandMetrics, StagedVideo
from bandhub_worker.services.youtube import YouTubeSearchResult, YouTubeVideo

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class FakeRepository:
    """In-memory stand-in for PostgresRepository."""

    def __init__(self):
        self.bands: dict[str, Band] = {}
        self.featured_ids: list[str] = []
        self.featured_error: Optional[Exception] = None
        self.sync_jobs: dict[str, dict] = {}
        self.band_status: dict[str, tuple[str, datetime]] = {}
        self.staged: dict[str, StagedVideo] = {}
        self.public: dict[str, dict] = {}
        self.categories = {"performances": "cat-perf", "battles-competitions": "cat-battle"}
        self.insert_errors: set[str] = set()
        self.assign_errors: set[str] = set()
        self.opponents: dict[str, Optional[str]] = {}
        self.stats_updates: dict[str, tuple[int, int]] = {}
        self.activity: list[BandActivity] = []
        self.metrics: dict[str, BandMetrics] = {}
        self.cleanup_counts = {"duplicates": 0, "low_quality": 0, "stale": 0}
        self.cleanup_calls: list[tuple] = []

    async def ping(self) -> bool:
        return True

    async def get_featured_band_ids(self) -> list[str]:
        if self.featured_error is not None:
            raise self.featured_error
        return list(self.featured_ids)

    async def get_active_bands(self) -> list[Band]:
        return [band for band in self.bands.values() if band.is_active]

    async def get_band(self, band_id: str) -> Optional[Band]:
        return self.bands.get(band_id)

    async def update_band_sync_status(self, band_id: str, status: str, last_sync_at: datetime) -> None:
        self.band_status[band_id] = (status, last_sync_at)

    async def ensure_sync_job(self, sync_job_id: str, band_id, job_type: str) -> bool:
        is_new = sync_job_id not in self.sync_jobs
        row = self.sync_jobs.setdefault(sync_job_id, {"band_id": band_id, "job_type": job_type})
        row["status"] = "QUEUED"
        return is_new

    async def update_sync_job(self, sync_job_id: str, status: str, **fields) -> None:
        self.sync_jobs[sync_job_id].update(status=status, **fields)

    async def upsert_staged_video(self, band_id, video: dict, quality_score: int) -> bool:
        is_new = video["id"] not in self.staged
        self.staged[video["id"]] = StagedVideo(
            id=f"staged-{video['id']}",
            youtube_id=video["id"],
            title=video.get("title", ""),
            description=video.get("description"),
            channel_title=video.get("channel_title"),
            band_id=band_id,
            published_at=T0,
            view_count=video.get("view_count", 0),
            quality_score=quality_score,
        )
        return is_new

    async def get_promotable_videos(self, limit=None) -> list[StagedVideo]:
        rows = [v for v in self.staged.values() if v.band_id and not v.is_promoted]
        return rows[:limit] if limit else rows

    async def get_unmatched_staged_videos(self, limit=None) -> list[StagedVideo]:
        rows = [v for v in self.staged.values() if not v.band_id]
        return rows[:limit] if limit else rows

    async def assign_band(self, staged_id: str, band_id: str, opponent_band_id, match_score: int) -> None:
        if staged_id in self.assign_errors:
            raise RuntimeError("update failed")
        for youtube_id, video in self.staged.items():
            if video.id == staged_id:
                self.staged[youtube_id] = replace(video, band_id=band_id, quality_score=match_score)
                self.opponents[staged_id] = opponent_band_id

    async def mark_promoted(self, staged_id: str) -> None:
        for youtube_id, video in self.staged.items():
            if video.id == staged_id:
                self.staged[youtube_id] = replace(video, is_promoted=True)

    async def video_exists(self, youtube_id: str) -> bool:
        return youtube_id in self.public

    async def get_category_id(self, slug: str) -> Optional[str]:
        return self.categories.get(slug)

    async def insert_video(self, staged: StagedVideo, category_id) -> str:
        if staged.youtube_id in self.insert_errors:
            raise RuntimeError("insert failed")
        self.public[staged.youtube_id] = {"band_id": staged.band_id, "category_id": category_id}
        return f"video-{staged.youtube_id}"

    async def remove_duplicate_videos(self, dry_run: bool = False) -> int:
        self.cleanup_calls.append(("duplicates", dry_run))
        return self.cleanup_counts["duplicates"]

    async def hide_low_quality_videos(self, threshold: int, dry_run: bool = False) -> int:
        self.cleanup_calls.append(("low_quality", threshold, dry_run))
        return self.cleanup_counts["low_quality"]

    async def hide_stale_videos(self, updated_before: datetime, dry_run: bool = False) -> int:
        self.cleanup_calls.append(("stale", updated_before, dry_run))
        return self.cleanup_counts["stale"]

    async def get_recent_public_youtube_ids(self, limit: int) -> list[str]:
        return list(self.public)[:limit]

    async def update_video_statistics(self, youtube_id: str, view_count: int, like_count: int) -> None:
        self.stats_updates[youtube_id] = (view_count, like_count)

    async def get_band_activity(self) -> list[BandActivity]:
        return list(self.activity)

    async def get_band_metrics(self, band_id: str) -> Optional[BandMetrics]:
        return self.metrics.get(band_id)

    async def upsert_band_metrics(self, metrics: BandMetrics) -> None:
        self.metrics[metrics.band_id] = metrics

    async def update_rankings(self) -> int:
        ranked = sorted(self.metrics.values(), key=lambda m: m.trending_score, reverse=True)
        for rank, metrics in enumerate(ranked, start=1):
            metrics.current_rank = rank
        return len(ranked)


class StubYouTube:
    """Canned YouTube responses; an Exception value is raised instead of returned."""

    def __init__(self):
        self.search_results: dict[str, object] = {}
        self.channel_result: object = YouTubeSearchResult()
        self.playlist_results: dict[str, object] = {}
        self.details: dict[str, YouTubeVideo] = {}
        self.search_calls: list[tuple[str, dict]] = []
        self.quota_exceeded = False

    @staticmethod
    def _answer(value):
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def search_videos(self, query: str, **kwargs) -> YouTubeSearchResult:
        self.search_calls.append((query, kwargs))
        return self._answer(self.search_results.get(query, YouTubeSearchResult()))

    async def get_channel_videos(self, channel_id: str, **kwargs) -> YouTubeSearchResult:
        return self._answer(self.channel_result)

    async def get_playlist_videos(self, playlist_id: str, **kwargs) -> YouTubeSearchResult:
        return self._answer(self.playlist_results.get(playlist_id, YouTubeSearchResult()))

    async def get_video_details(self, video_ids: list[str]) -> list[YouTubeVideo]:
        if self.quota_exceeded:
            raise YouTubeQuotaExceededError("quota")
        return [self.details[v] for v in video_ids if v in self.details]

    async def close(self) -> None:
        pass


def make_video(video_id: str, published_at: str = "2024-05-01T10:00:00Z", **fields) -> YouTubeVideo:
    return YouTubeVideo(id=video_id, title=fields.pop("title", f"Video {video_id}"), published_at=published_at, **fields)


def make_store(clock: FakeClock) -> JobStore:
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return JobStore(client=client, prefix="test", clock=clock)


def load_featured(repository: FakeRepository) -> FeaturedBandCache:
    cache = FeaturedBandCache(repository, refresh_interval_seconds=3600)
    asyncio.run(cache.refresh())
    return cache


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Isolate every test from the developer's environment."""
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    repo = FakeRepository()
    repo.bands["band-1"] = Band(id="band-1", name="Southern University", school_name="Southern University")
    repo.bands["band-2"] = Band(id="band-2", name="Human Jukebox", school_name="Southern University")
    repo.featured_ids = ["band-featured"]
    return repo


@pytest.fixture
def featured(repository):
    return load_featured(repository)


@pytest.fixture
def policy(featured, clock):
    return PriorityPolicy(featured, clock=clock)


@pytest.fixture
def youtube():
    return StubYouTube()
