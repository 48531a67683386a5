"""Tests for the job submission facade."""

import asyncio
from datetime import timedelta

import pytest

from bandhub_worker.errors import ConfigurationError, InvalidStateError, JobNotFoundError
from bandhub_worker.queue.types import JobOptions, JobPriority, JobState, JobType, QueueName, SyncMode
from bandhub_worker.services.queue_service import QueueService

from conftest import T0, make_store


def _service(clock, policy):
    store = make_store(clock)
    return store, QueueService(store, policy, clock=clock)


class TestSubmitWithPriority:

    def test_featured_band_sync_resolves_critical(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            return await service.submit_with_priority(
                QueueName.VIDEO_SYNC, JobType.SYNC_BAND, {"band_id": "band-featured"}
            )

        job = asyncio.run(scenario())
        assert job.priority == JobPriority.CRITICAL
        assert job.name == "sync-band"

    def test_queue_defaults_apply(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            return await service.submit_with_priority("video-sync", "sync-band", {"band_id": "band-1"})

        job = asyncio.run(scenario())
        assert job.opts.attempts == 3
        assert job.opts.backoff.type == "exponential"
        assert job.opts.backoff.delay_ms == 30_000

    def test_override_options_win(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            return await service.submit_with_priority(
                "maintenance",
                JobType.CLEANUP_VIDEOS,
                {"scope": "all"},
                {"priority": JobPriority.HIGH, "attempts": 4, "job_id": "cleanup-manual"},
            )

        job = asyncio.run(scenario())
        assert job.id == "cleanup-manual"
        assert job.priority == JobPriority.HIGH
        assert job.opts.attempts == 4

    def test_job_options_override_only_applies_set_fields(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            return await service.submit_with_priority(
                "video-sync", JobType.SYNC_ALL_BANDS, {}, JobOptions(job_id="fan-out")
            )

        job = asyncio.run(scenario())
        assert job.priority == JobPriority.LOW
        assert job.opts.attempts == 3

    def test_unknown_queue_raises(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            await service.submit_with_priority("no-such-queue", "sync-band", {})

        with pytest.raises(ConfigurationError, match="Queue not found: no-such-queue"):
            asyncio.run(scenario())

    def test_invalid_options_raise_configuration_error(self):
        with pytest.raises(ConfigurationError):
            QueueService.build_options(QueueName.VIDEO_SYNC, JobPriority.NORMAL, {"attempts": 0})


class TestTypedSubmissions:

    def test_band_sync_payload_and_id(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            return await service.submit_band_sync("band-1", SyncMode.FULL, triggered_by="admin")

        job = asyncio.run(scenario())
        assert job.id == f"sync-band-1-{int(T0.timestamp() * 1000)}"
        assert job.data == {"band_id": "band-1", "mode": "FULL_SYNC", "triggered_by": "admin", "priority": None}
        assert job.priority == JobPriority.NORMAL

    def test_band_sync_featured_and_override(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            featured = await service.submit_band_sync("band-featured")
            clock.advance(milliseconds=1)
            overridden = await service.submit_band_sync("band-featured", override_priority=JobPriority.LOW)
            return featured, overridden

        featured, overridden = asyncio.run(scenario())
        assert featured.priority == JobPriority.CRITICAL
        assert overridden.priority == JobPriority.LOW
        assert overridden.data["priority"] == JobPriority.LOW

    @pytest.mark.parametrize("band_id, age, expected", [
        ("band-featured", timedelta(days=30), JobPriority.CRITICAL),
        ("band-1", timedelta(hours=1), JobPriority.HIGH),
        ("band-1", timedelta(days=3), JobPriority.NORMAL),
    ])
    def test_video_processing_priority(self, clock, policy, band_id, age, expected):
        published_at = (T0 - age).isoformat()

        async def scenario():
            store, service = _service(clock, policy)
            return await service.submit_video_processing({
                "band_id": band_id,
                "youtube_id": "abc",
                "video": {"id": "abc", "published_at": published_at},
            })

        job = asyncio.run(scenario())
        assert job.priority == expected
        assert job.opts.attempts == 2
        assert job.opts.backoff.type == "exponential"
        assert job.opts.backoff.delay_ms == 5_000


class TestUpdateJobPriority:

    def test_waiting_job_is_resubmitted_with_new_priority(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            job = await service.submit_with_priority(
                "video-sync", "sync-band", {"band_id": "band-1"}, {"job_id": "j1"}
            )
            new_job = await service.update_job_priority("video-sync", job.id, JobPriority.CRITICAL)
            return new_job, await store.get_job("video-sync", "j1"), await store.dequeue("video-sync")

        new_job, old, next_up = asyncio.run(scenario())
        assert new_job.id == "j1-reprioritized"
        assert new_job.priority == JobPriority.CRITICAL
        assert new_job.data == {"band_id": "band-1"}
        assert old is None
        assert next_up.id == "j1-reprioritized"

    def test_delayed_job_keeps_remaining_delay(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            await service.submit_with_priority(
                "video-sync", "sync-band", {}, {"job_id": "d1", "delay_ms": 60_000}
            )
            clock.advance(seconds=20)
            new_job = await service.update_job_priority("video-sync", "d1", JobPriority.HIGH)
            return new_job, await store.get_delay_remaining_ms("video-sync", new_job.id)

        new_job, remaining = asyncio.run(scenario())
        assert new_job.state == JobState.DELAYED
        assert remaining == 40_000

    def test_active_job_is_rejected_without_mutation(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            await service.submit_with_priority("video-sync", "sync-band", {}, {"job_id": "busy"})
            await store.dequeue("video-sync")
            with pytest.raises(InvalidStateError):
                await service.update_job_priority("video-sync", "busy", JobPriority.CRITICAL)
            return await store.get_job("video-sync", "busy"), await store.get_job("video-sync", "busy-reprioritized")

        job, ghost = asyncio.run(scenario())
        assert job.state == JobState.ACTIVE
        assert job.priority == JobPriority.NORMAL
        assert ghost is None

    def test_missing_job_raises(self, clock, policy):
        async def scenario():
            store, service = _service(clock, policy)
            await service.update_job_priority("video-sync", "nope", JobPriority.HIGH)

        with pytest.raises(JobNotFoundError):
            asyncio.run(scenario())
