"""Background worker that consumes the job queues.

One process runs the whole stack:
- featured bands cache (first load blocks startup)
- cron scheduler submitting the recurring jobs
- consumer tasks per queue, each polling the job store and dispatching
  to the processor registered for the job's type
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from bandhub_worker.config import Settings, get_settings
from bandhub_worker.errors import TerminalError, TransientExternalError
from bandhub_worker.lib.json_logger import job_logger
from bandhub_worker.monitoring.quota_tracker import QuotaTracker
from bandhub_worker.priority.featured_cache import FeaturedBandCache
from bandhub_worker.priority.rules import PriorityPolicy
from bandhub_worker.processors import BaseProcessor, build_processors
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job, JobState, JobType, QueueName
from bandhub_worker.scheduler.sync_scheduler import SyncScheduler
from bandhub_worker.services.circuit_breaker import CircuitBreaker
from bandhub_worker.services.metrics_reporter import MetricsReporter
from bandhub_worker.services.queue_service import QueueService
from bandhub_worker.services.repository import PostgresRepository
from bandhub_worker.services.youtube import YouTubeClient

logger = logging.getLogger(__name__)

# Job types that may only run once at a time per process
JOB_TYPE_LIMITS: dict[str, int] = {
    JobType.SYNC_ALL_BANDS.value: 1,
}


def default_concurrency(settings: Settings) -> dict[QueueName, int]:
    return {
        QueueName.VIDEO_SYNC: settings.sync_concurrency,
        QueueName.VIDEO_PROCESSING: settings.processing_concurrency,
        QueueName.MAINTENANCE: settings.maintenance_concurrency,
    }


class QueueWorker:
    """Polls the queues and hands each job to its processor."""

    def __init__(
        self,
        store: JobStore,
        processors: dict[str, BaseProcessor],
        concurrency: Optional[dict[QueueName, int]] = None,
        job_type_limits: Optional[dict[str, int]] = None,
        poll_interval: Optional[float] = None,
        job_timeout: Optional[float] = None,
        stalled_job_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.store = store
        self.processors = processors
        self.concurrency = concurrency or default_concurrency(settings)
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.job_timeout = job_timeout if job_timeout is not None else settings.job_timeout_seconds
        self.stalled_job_seconds = (
            stalled_job_seconds if stalled_job_seconds is not None else settings.stalled_job_seconds
        )
        self.stalled_check_interval = settings.stalled_check_interval_seconds
        self._next_stalled_check: dict[QueueName, float] = {}
        limits = JOB_TYPE_LIMITS if job_type_limits is None else job_type_limits
        self._limits = {job_type: asyncio.Semaphore(n) for job_type, n in limits.items()}
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def process_job(self, job: Job) -> JobState:
        """Run one dequeued job to its next state."""
        log = job_logger(job.id, job.name, job.queue).with_context(band_id=job.data.get("band_id"))
        processor = self.processors.get(job.name)
        if processor is None:
            log.error(f"No handler for job type: {job.name}")
            return await self.store.fail(job, f"No handler for job type: {job.name}", retry=False)

        log.info(
            f"Job {job.id} started",
            extra={"priority": job.priority, "attempts": job.attempts_made, "status": "active"},
        )
        started = time.monotonic()
        try:
            limit = self._limits.get(job.name)
            if limit is not None:
                async with limit:
                    result = await self._execute(processor, job)
            else:
                result = await self._execute(processor, job)
        except TerminalError as e:
            log.error(f"Job {job.id} failed permanently: {e}", extra={"status": "failed"})
            return await self.store.fail(job, str(e), retry=False)
        except Exception as e:
            log.exception(f"Job {job.id} handler error")
            return await self.store.fail(job, str(e) or type(e).__name__)
        except asyncio.CancelledError:
            log.warning(f"Job {job.id} interrupted by shutdown, returning it to the queue", extra={"status": "waiting"})
            await asyncio.shield(self.store.release(job, "Worker shut down while job was running"))
            raise

        await self.store.complete(job, result)
        log.info(
            f"Job {job.id} completed",
            extra={"duration_ms": int((time.monotonic() - started) * 1000), "status": "completed"},
        )
        return JobState.COMPLETED

    async def _execute(self, processor: BaseProcessor, job: Job) -> dict:
        if not self.job_timeout:
            return await processor.process(job)
        try:
            return await asyncio.wait_for(processor.process(job), self.job_timeout)
        except asyncio.TimeoutError:
            raise TransientExternalError(f"Job {job.id} timed out after {self.job_timeout:g}s") from None

    async def _recover_stalled(self, queue: QueueName) -> None:
        if not self.stalled_job_seconds:
            return
        now = time.monotonic()
        if now < self._next_stalled_check.get(queue, 0.0):
            return
        self._next_stalled_check[queue] = now + self.stalled_check_interval
        await self.store.recover_stalled(queue.value, int(self.stalled_job_seconds * 1000))

    async def consume(self, queue: QueueName) -> None:
        """Process jobs from a queue until stopped."""
        logger.info(f"Starting queue processor for {queue.value}")

        while self._running:
            try:
                await self._recover_stalled(queue)
                job = await self.store.dequeue(queue.value)
                if job is None:
                    await self._sleep(self.poll_interval)
                    continue
                await self.process_job(job)
            except asyncio.CancelledError:
                logger.info("Queue processor cancelled")
                break
            except Exception as e:
                logger.exception(f"Queue processor error: {e}")
                await self._sleep(5)

        logger.info(f"Queue processor stopped for {queue.value}")

    async def run(self) -> None:
        self._running = True
        tasks = [
            asyncio.create_task(self.consume(queue))
            for queue, count in self.concurrency.items()
            for _ in range(count)
        ]
        logger.info(
            "Starting worker: "
            + ", ".join(f"{queue.value}x{count}" for queue, count in self.concurrency.items())
        )
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()

    def stop(self) -> None:
        self._running = False


@dataclass
class WorkerStack:
    """Everything the worker process wires together."""
    settings: Settings
    store: JobStore
    repository: PostgresRepository
    featured: FeaturedBandCache
    policy: PriorityPolicy
    queue_service: QueueService
    quota: QuotaTracker
    breaker: CircuitBreaker
    youtube: YouTubeClient
    worker: QueueWorker
    scheduler: SyncScheduler
    reporter: MetricsReporter


def build_stack(settings: Optional[Settings] = None) -> WorkerStack:
    """Construct the stack without opening any connection."""
    settings = settings or get_settings()
    store = JobStore(settings.redis_url, settings.queue_prefix)
    repository = PostgresRepository()
    featured = FeaturedBandCache(repository, settings.featured_refresh_interval_seconds)
    policy = PriorityPolicy(featured)
    queue_service = QueueService(store, policy)
    quota = QuotaTracker(settings.youtube_daily_quota)
    breaker = CircuitBreaker("youtube")
    youtube = YouTubeClient(settings.youtube_api_key, breaker=breaker, quota=quota)
    processors = build_processors(store, repository, youtube, queue_service)

    return WorkerStack(
        settings=settings,
        store=store,
        repository=repository,
        featured=featured,
        policy=policy,
        queue_service=queue_service,
        quota=quota,
        breaker=breaker,
        youtube=youtube,
        worker=QueueWorker(store, processors, default_concurrency(settings)),
        scheduler=SyncScheduler(store, queue_service, settings),
        reporter=MetricsReporter(store),
    )


async def run_worker(stack: Optional[WorkerStack] = None, install_signal_handlers: bool = True) -> None:
    """
    Run the background worker.

    Args:
        stack: Prebuilt stack. Built from settings when omitted.
        install_signal_handlers: Stop on SIGTERM/SIGINT. Disable when the
            host (e.g. uvicorn) owns the signals.
    """
    stack = stack or build_stack()

    def shutdown():
        logger.info("Shutdown signal received")
        stack.scheduler.stop()
        stack.worker.stop()

    if install_signal_handlers:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

    try:
        if not await stack.store.connect():
            raise ConnectionError("Redis unavailable - job store offline")
        await stack.repository.connect(stack.settings.database_url)

        await stack.featured.start()
        await stack.scheduler.start()
        await stack.worker.run()
    except asyncio.CancelledError:
        logger.info("Worker tasks cancelled")
    except Exception:
        logger.exception("Worker failed")
        raise
    finally:
        stack.worker.stop()
        stack.scheduler.stop()
        await stack.featured.stop()
        await stack.youtube.close()
        await stack.repository.close()
        await stack.store.disconnect()
        logger.info("Worker stopped")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(run_worker())
