"""Tests for the queue worker's dispatch and outcome handling."""

import asyncio

import pytest

from bandhub_worker.errors import TerminalError
from bandhub_worker.processors import build_processors
from bandhub_worker.queue.types import BackoffPolicy, JobOptions, JobState, JobType, QueueName
from bandhub_worker.queue.worker import QueueWorker

from conftest import FakeRepository, StubYouTube, make_store

QUEUE = QueueName.VIDEO_SYNC.value


class RecordingProcessor:
    job_type = "sync-band"

    def __init__(self, outcome=None):
        self.outcome = outcome
        self.seen = []

    async def process(self, job):
        self.seen.append(job.id)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return {"stage": self.job_type, "processed": 1}


def _worker(store, processor, **kwargs):
    return QueueWorker(
        store,
        {processor.job_type: processor},
        concurrency={QueueName.VIDEO_SYNC: 1},
        poll_interval=0,
        **kwargs,
    )


def test_success_completes_job_with_result(clock):
    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "sync-band", {"band_id": "b"}, JobOptions(job_id="ok"))
        worker = _worker(store, RecordingProcessor())
        state = await worker.process_job(await store.dequeue(QUEUE))
        return state, await store.get_job(QUEUE, "ok")

    state, job = asyncio.run(scenario())
    assert state == JobState.COMPLETED
    assert job.return_value == {"stage": "sync-band", "processed": 1}


def test_terminal_error_fails_without_retry(clock):
    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "sync-band", {}, JobOptions(job_id="t", attempts=3))
        worker = _worker(store, RecordingProcessor(TerminalError("Band not found: b")))
        return await worker.process_job(await store.dequeue(QUEUE)), await store.get_job(QUEUE, "t")

    state, job = asyncio.run(scenario())
    assert state == JobState.FAILED
    assert job.failed_reason == "Band not found: b"


def test_other_errors_use_retry_policy(clock):
    options = JobOptions(job_id="r", attempts=3, backoff=BackoffPolicy(type="fixed", delay_ms=5_000))

    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "sync-band", {}, options)
        worker = _worker(store, RecordingProcessor(RuntimeError("timeout")))
        return await worker.process_job(await store.dequeue(QUEUE))

    assert asyncio.run(scenario()) == JobState.DELAYED


def test_unknown_job_type_fails_permanently(clock):
    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "backfill-creators", {}, JobOptions(job_id="m", attempts=3))
        worker = _worker(store, RecordingProcessor())
        return await worker.process_job(await store.dequeue(QUEUE)), await store.get_job(QUEUE, "m")

    state, job = asyncio.run(scenario())
    assert state == JobState.FAILED
    assert job.failed_reason == "No handler for job type: backfill-creators"


def test_run_consumes_until_stopped(clock):
    processor = RecordingProcessor()

    async def scenario():
        store = make_store(clock)
        for job_id in ("first", "second"):
            await store.enqueue(QUEUE, "sync-band", {}, JobOptions(job_id=job_id))

        async def idle(_seconds):
            # Queue drained: stop the worker
            worker.stop()
            await asyncio.sleep(0)

        worker = _worker(store, processor, sleep=idle)
        await asyncio.wait_for(worker.run(), timeout=5)
        return await store.get_job_counts(QUEUE)

    counts = asyncio.run(scenario())
    assert processor.seen == ["first", "second"]
    assert counts["completed"] == 2
    assert counts["waiting"] == 0


def test_job_type_limit_serialises_runs(clock):
    running = 0
    peak = 0

    class SlowProcessor(RecordingProcessor):
        job_type = "sync-all-bands"

        async def process(self, job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return {}

    async def scenario():
        store = make_store(clock)
        for job_id in ("a", "b"):
            await store.enqueue(QUEUE, "sync-all-bands", {}, JobOptions(job_id=job_id))
        worker = QueueWorker(store, {"sync-all-bands": SlowProcessor()}, concurrency={QueueName.VIDEO_SYNC: 2})
        jobs = [await store.dequeue(QUEUE), await store.dequeue(QUEUE)]
        return await asyncio.gather(*(worker.process_job(job) for job in jobs))

    assert asyncio.run(scenario()) == [JobState.COMPLETED, JobState.COMPLETED]
    assert peak == 1


def test_hung_job_times_out_and_is_retried(clock):
    class HangingProcessor(RecordingProcessor):
        async def process(self, job):
            await asyncio.sleep(10)

    options = JobOptions(job_id="slow", attempts=2, backoff=BackoffPolicy(type="fixed", delay_ms=5_000))

    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "sync-band", {}, options)
        worker = _worker(store, HangingProcessor(), job_timeout=0.01)
        return await worker.process_job(await store.dequeue(QUEUE)), await store.get_job(QUEUE, "slow")

    state, job = asyncio.run(scenario())
    assert state == JobState.DELAYED
    assert job.failed_reason == "Job slow timed out after 0.01s"


def test_shutdown_mid_job_returns_it_to_the_queue(clock):
    class BlockingProcessor(RecordingProcessor):
        async def process(self, job):
            self.started.set()
            await asyncio.sleep(10)

    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "sync-band", {}, JobOptions(job_id="s", attempts=2))
        processor = BlockingProcessor()
        processor.started = asyncio.Event()
        worker = _worker(store, processor)

        task = asyncio.create_task(worker.process_job(await store.dequeue(QUEUE)))
        await processor.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await store.get_job(QUEUE, "s"), await store.dequeue(QUEUE)

    job, again = asyncio.run(scenario())
    assert job.state == JobState.WAITING
    assert job.attempts_made == 0
    assert again.id == "s"


def test_consumer_recovers_jobs_abandoned_by_a_dead_worker(clock):
    processor = RecordingProcessor()

    async def scenario():
        store = make_store(clock)
        await store.enqueue(QUEUE, "sync-band", {}, JobOptions(job_id="orphan", attempts=2))
        await store.dequeue(QUEUE)
        clock.advance(hours=2)

        async def idle(_seconds):
            worker.stop()
            await asyncio.sleep(0)

        worker = _worker(store, processor, sleep=idle, stalled_job_seconds=3600)
        await asyncio.wait_for(worker.run(), timeout=5)
        return await store.get_job(QUEUE, "orphan")

    job = asyncio.run(scenario())
    assert processor.seen == ["orphan"]
    assert job.state == JobState.COMPLETED
    assert job.attempts_made == 2


def test_every_pipeline_stage_has_a_processor(clock):
    processors = build_processors(make_store(clock), FakeRepository(), StubYouTube(), None)
    expected = {job_type.value for job_type in JobType} - {JobType.BACKFILL_CREATORS.value}
    assert set(processors) == expected
