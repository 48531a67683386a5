"""Tests for trending scores, trend direction and rankings."""

import asyncio
from datetime import timedelta

import pytest

from bandhub_worker.processors.trending_metrics import (
    TrendDirection,
    TrendingMetricsProcessor,
    calculate_trending_score,
    compute_band_metrics,
    determine_trend_direction,
)
from bandhub_worker.queue.types import JobOptions
from bandhub_worker.services.repository import BandActivity, BandMetrics

from conftest import T0, FakeRepository, make_store


@pytest.mark.parametrize("current, previous, expected", [
    (112, 100, TrendDirection.UP),
    (89, 100, TrendDirection.DOWN),
    (105, 100, TrendDirection.STABLE),
    (110, 100, TrendDirection.STABLE),
    (50, 0, TrendDirection.NEW),
    (50, None, TrendDirection.NEW),
])
def test_trend_direction_thresholds(current, previous, expected):
    assert determine_trend_direction(current, previous) == expected


def test_score_is_zero_without_activity():
    assert calculate_trending_score(0, 0, 0, 0, 0, 0) == 0


def test_recent_uploads_dominate_small_bands():
    quiet = calculate_trending_score(100, 0, 0, 0, 0, 100)
    active = calculate_trending_score(100, 3, 0, 0, 0, 100)
    assert active - quiet == pytest.approx(6.0)


def test_compute_band_metrics_windows_by_publish_date():
    activity = BandActivity(
        band_id="b",
        videos=[
            (T0 - timedelta(hours=2), 100),
            (T0 - timedelta(days=3), 200),
            (T0 - timedelta(days=20), 300),
            (T0 - timedelta(days=90), 400),
        ],
        favorites=10,
        followers=5,
        shares=1,
    )

    metrics = compute_band_metrics(activity, T0)

    assert metrics.total_views == 1000
    assert metrics.views_today == 100
    assert metrics.views_this_week == 300
    assert metrics.views_this_month == 600
    assert metrics.recent_uploads == 2
    assert metrics.video_count == 4
    assert metrics.avg_video_views == 250
    assert metrics.trending_score > 0


def test_processor_updates_metrics_and_ranks(clock):
    repo = FakeRepository()
    repo.activity = [
        BandActivity(band_id="hot", videos=[(T0 - timedelta(days=1), 50_000)] * 3, favorites=40),
        BandActivity(band_id="cold", videos=[(T0 - timedelta(days=60), 10)]),
    ]
    repo.metrics["cold"] = BandMetrics(band_id="cold", trending_score=5.0, current_rank=1)

    async def scenario():
        store = make_store(clock)
        await store.enqueue("maintenance", "calculate-trending", {}, JobOptions(job_id="t"))
        job = await store.dequeue("maintenance")
        return await TrendingMetricsProcessor(store, repo, clock=clock).process(job)

    result = asyncio.run(scenario())

    assert result["succeeded"] == 2
    assert result["ranked"] == 2
    assert repo.metrics["hot"].trend_direction == "NEW"
    assert repo.metrics["hot"].current_rank == 1
    assert repo.metrics["cold"].trend_direction == "DOWN"
    assert repo.metrics["cold"].previous_rank == 1
    assert repo.metrics["cold"].current_rank == 2
