"""Redis-based job store for the BandHub worker.

Features:
- One priority queue per queue name using Redis sorted sets
  (lower priority value first, FIFO among equal priorities)
- Delayed jobs, promoted to waiting once their delay elapses
- Retry with fixed or exponential backoff, terminal failed state
- Idempotent submission: an existing job id is never added twice
- Retention trimming of completed and failed jobs by count and age
- Per-job state inspection and repeatable schedule registrations
"""

import os
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import redis.asyncio as redis
import logging

from bandhub_worker.config import get_settings
from bandhub_worker.queue.types import (
    Job,
    JobOptions,
    JobState,
    RepeatableJob,
    RetentionPolicy,
)

logger = logging.getLogger(__name__)

# Sorted sets per queue, one per state
STATE_SETS = {
    JobState.WAITING: "waiting",
    JobState.DELAYED: "delayed",
    JobState.ACTIVE: "active",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
}

# Waiting score = priority * PRIORITY_SHIFT + sequence
PRIORITY_SHIFT = 2 ** 32


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class JobStore:
    """Redis-backed multi-queue job store with priorities, delays, retries and retention."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.prefix = prefix or settings.queue_prefix
        self._redis: Optional[redis.Redis] = client
        self._connected = client is not None
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected and self._redis is not None

    async def connect(self) -> bool:
        """Connect to Redis. Returns True if connected, False if unavailable."""
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
                await self._redis.ping()
                logger.info(f"Connected to Redis at {self.redis_url}")
                self._connected = True
                return True
            except Exception as e:
                logger.warning(f"Redis unavailable at {self.redis_url}: {e}")
                self._redis = None
                self._connected = False
                return False
        return self._connected

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._connected = False
            logger.info("Disconnected from Redis")

    async def _client(self) -> redis.Redis:
        connected = await self.connect()
        if not connected or self._redis is None:
            raise ConnectionError("Redis unavailable - job store offline")
        return self._redis

    # ==================== Keys ====================

    def _key(self, queue: str, suffix: str) -> str:
        return f"{self.prefix}:{queue}:{suffix}"

    def _job_key(self, queue: str, job_id: str) -> str:
        return self._key(queue, f"job:{job_id}")

    def _state_key(self, queue: str, state: JobState) -> str:
        return self._key(queue, STATE_SETS[state])

    # ==================== Submission ====================

    async def enqueue(
        self,
        queue: str,
        name: str,
        data: dict,
        options: Optional[JobOptions] = None,
    ) -> Job:
        """
        Add a job to a queue.

        Args:
            queue: Queue name
            name: Job type
            data: Job payload
            options: Priority, attempts, backoff, delay, job id and retention

        Returns:
            The created Job, or the already-stored job if `options.job_id` exists

        Raises:
            ConnectionError: If Redis is unavailable
        """
        r = await self._client()
        options = options or JobOptions()
        now = self._clock()

        job_id = options.job_id or f"{name}_{now.strftime('%Y%m%d%H%M%S')}_{os.urandom(4).hex()}"
        state = JobState.DELAYED if options.delay_ms > 0 else JobState.WAITING

        job = Job(
            id=job_id,
            name=name,
            queue=queue,
            data=data,
            opts=options,
            state=state,
            created_at=now,
        )

        created = await r.set(self._job_key(queue, job_id), job.model_dump_json(), nx=True)
        if not created:
            existing = await self.get_job(queue, job_id)
            if existing is not None:
                logger.info(
                    f"Job {job_id} already exists in {queue} ({existing.state.value}), not re-adding",
                    extra={"job_id": job_id, "queue": queue},
                )
                return existing
            await self._save(r, job)

        if state == JobState.DELAYED:
            await r.zadd(self._state_key(queue, JobState.DELAYED), {job_id: _ms(now) + options.delay_ms})
        else:
            await self._push_waiting(r, queue, job_id, options.priority)

        logger.info(
            f"Enqueued job {job_id} ({name}) to {queue} with priority {options.priority}",
            extra={"job_id": job_id, "queue": queue, "job_type": name, "priority": options.priority},
        )
        return job

    async def _push_waiting(self, r: redis.Redis, queue: str, job_id: str, priority: int) -> None:
        seq = await r.incr(self._key(queue, "seq"))
        score = priority * PRIORITY_SHIFT + (seq % PRIORITY_SHIFT)
        await r.zadd(self._state_key(queue, JobState.WAITING), {job_id: score})

    async def _save(self, r: redis.Redis, job: Job) -> None:
        await r.set(self._job_key(job.queue, job.id), job.model_dump_json())

    # ==================== Consumption ====================

    async def promote_delayed(self, queue: str) -> int:
        """Move every delayed job whose delay has elapsed to waiting."""
        r = await self._client()
        delayed_key = self._state_key(queue, JobState.DELAYED)
        due = await r.zrangebyscore(delayed_key, "-inf", _ms(self._clock()))

        promoted = 0
        for job_id in due:
            # Whoever removes the member owns the promotion
            if not await r.zrem(delayed_key, job_id):
                continue
            job = await self.get_job(queue, job_id)
            if job is None:
                continue
            job.state = JobState.WAITING
            await self._save(r, job)
            await self._push_waiting(r, queue, job_id, job.opts.priority)
            promoted += 1

        if promoted:
            logger.debug(f"Promoted {promoted} delayed jobs in {queue}")
        return promoted

    async def dequeue(self, queue: str) -> Optional[Job]:
        """
        Take the next job from a queue.

        Returns:
            The most urgent waiting job (now active), or None if nothing is ready
        """
        r = await self._client()
        await self.promote_delayed(queue)

        popped = await r.zpopmin(self._state_key(queue, JobState.WAITING), 1)
        if not popped:
            return None

        job_id, _score = popped[0]
        job = await self.get_job(queue, job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found in storage")
            return None

        now = self._clock()
        job.state = JobState.ACTIVE
        job.processed_at = now
        job.attempts_made += 1

        await self._save(r, job)
        await r.zadd(self._state_key(queue, JobState.ACTIVE), {job_id: _ms(now)})

        logger.debug(f"Dequeued job {job_id} from {queue}")
        return job

    async def complete(self, job: Job, result: Optional[dict] = None) -> None:
        """Mark a job as completed successfully."""
        r = await self._client()
        now = self._clock()

        job.state = JobState.COMPLETED
        job.finished_at = now
        job.return_value = result

        await r.zrem(self._state_key(job.queue, JobState.ACTIVE), job.id)
        await self._save(r, job)
        await r.zadd(self._state_key(job.queue, JobState.COMPLETED), {job.id: _ms(now)})
        await self._apply_retention(r, job.queue, JobState.COMPLETED, job.opts.remove_on_complete)

        logger.info(f"Job {job.id} completed successfully", extra={"job_id": job.id, "queue": job.queue})

    async def fail(self, job: Job, error: str, retry: bool = True) -> JobState:
        """
        Record a failed attempt.

        If retry is enabled and attempts remain, re-schedule using the job's backoff.
        Otherwise the job moves to the terminal failed state.

        Returns:
            The job's new state
        """
        r = await self._client()
        now = self._clock()

        job.failed_reason = error
        job.error_history.append(f"[{now.isoformat()}] {error}")
        await r.zrem(self._state_key(job.queue, JobState.ACTIVE), job.id)

        if retry and job.attempts_made < job.opts.attempts:
            delay = job.opts.backoff.delay_for(job.attempts_made) if job.opts.backoff else 0
            if delay > 0:
                job.state = JobState.DELAYED
                await self._save(r, job)
                await r.zadd(self._state_key(job.queue, JobState.DELAYED), {job.id: _ms(now) + delay})
            else:
                job.state = JobState.WAITING
                await self._save(r, job)
                await self._push_waiting(r, job.queue, job.id, job.opts.priority)

            logger.warning(
                f"Job {job.id} failed, retry {job.attempts_made}/{job.opts.attempts} in {delay / 1000:.0f}s: {error}",
                extra={"job_id": job.id, "queue": job.queue, "attempts": job.attempts_made},
            )
        else:
            job.state = JobState.FAILED
            job.finished_at = now
            await self._save(r, job)
            await r.zadd(self._state_key(job.queue, JobState.FAILED), {job.id: _ms(now)})
            await self._apply_retention(r, job.queue, JobState.FAILED, job.opts.remove_on_fail)

            logger.error(
                f"Job {job.id} failed after {job.attempts_made} attempts: {error}",
                extra={"job_id": job.id, "queue": job.queue, "attempts": job.attempts_made},
            )

        return job.state

    async def release(self, job: Job, reason: str) -> None:
        """
        Return an active job to the waiting set without spending an attempt.

        Used when the worker stops mid-job; the interruption is kept in the
        job's error history.
        """
        r = await self._client()
        now = self._clock()

        if not await r.zrem(self._state_key(job.queue, JobState.ACTIVE), job.id):
            return
        job.state = JobState.WAITING
        job.attempts_made = max(job.attempts_made - 1, 0)
        job.error_history.append(f"[{now.isoformat()}] {reason}")
        await self._save(r, job)
        await self._push_waiting(r, job.queue, job.id, job.opts.priority)

        logger.warning(f"Job {job.id} released back to {job.queue}: {reason}", extra={"job_id": job.id, "queue": job.queue})

    async def recover_stalled(self, queue: str, stalled_after_ms: int) -> list[str]:
        """
        Fail jobs left active longer than `stalled_after_ms`, typically by a
        worker process that died without releasing them. Each goes through the
        normal retry policy.

        Returns:
            Ids of the recovered jobs
        """
        r = await self._client()
        active_key = self._state_key(queue, JobState.ACTIVE)
        cutoff = _ms(self._clock()) - stalled_after_ms
        recovered = []

        for job_id in await r.zrangebyscore(active_key, "-inf", cutoff):
            # Claimed by whichever worker removes it first
            if not await r.zrem(active_key, job_id):
                continue
            job = await self.get_job(queue, job_id)
            if job is None:
                continue
            await self.fail(job, f"Job stalled: active for more than {stalled_after_ms // 1000}s")
            recovered.append(job_id)

        if recovered:
            logger.warning(f"Recovered {len(recovered)} stalled jobs in {queue}")
        return recovered

    async def update_progress(self, job: Job, progress: dict) -> None:
        """Store progress information on a running job."""
        r = await self._client()
        job.progress = progress
        await self._save(r, job)

    async def _apply_retention(
        self,
        r: redis.Redis,
        queue: str,
        state: JobState,
        policy: RetentionPolicy,
    ) -> None:
        """Trim finished jobs older than the policy age or beyond its count."""
        key = self._state_key(queue, state)
        stale: set[str] = set()

        if policy.age_seconds > 0:
            cutoff = _ms(self._clock()) - policy.age_seconds * 1000
            stale.update(await r.zrangebyscore(key, "-inf", f"({cutoff}"))

        overflow = await r.zcard(key) - policy.count
        if overflow > 0:
            stale.update(await r.zrange(key, 0, overflow - 1))

        if stale:
            await r.zrem(key, *stale)
            await r.delete(*[self._job_key(queue, job_id) for job_id in stale])
            logger.debug(f"Trimmed {len(stale)} {state.value} jobs from {queue}")

    # ==================== Inspection ====================

    async def get_job(self, queue: str, job_id: str) -> Optional[Job]:
        """Get a job by id."""
        r = await self._client()
        data = await r.get(self._job_key(queue, job_id))
        if not data:
            return None
        return Job.model_validate_json(data)

    async def get_state(self, queue: str, job_id: str) -> Optional[JobState]:
        """Get the current state of a job, or None if it does not exist."""
        job = await self.get_job(queue, job_id)
        return job.state if job else None

    async def get_delay_remaining_ms(self, queue: str, job_id: str) -> int:
        """Milliseconds until a delayed job becomes ready (0 if not delayed or already due)."""
        r = await self._client()
        ready_at = await r.zscore(self._state_key(queue, JobState.DELAYED), job_id)
        if ready_at is None:
            return 0
        return max(int(ready_at) - _ms(self._clock()), 0)

    async def remove(self, queue: str, job_id: str) -> bool:
        """Remove a job from its queue and delete its data."""
        r = await self._client()
        for state in STATE_SETS:
            await r.zrem(self._state_key(queue, state), job_id)
        deleted = await r.delete(self._job_key(queue, job_id))
        if deleted:
            logger.info(f"Removed job {job_id} from {queue}")
        return bool(deleted)

    async def get_jobs(
        self,
        queue: str,
        states: Iterable[JobState],
        start: int = 0,
        end: int = -1,
    ) -> list[Job]:
        """
        List jobs in the given states.

        Waiting and delayed jobs come in service order; active, completed and
        failed jobs newest first.
        """
        r = await self._client()
        jobs: list[Job] = []

        for state in states:
            key = self._state_key(queue, state)
            if state in (JobState.WAITING, JobState.DELAYED):
                job_ids = await r.zrange(key, start, end)
            else:
                job_ids = await r.zrevrange(key, start, end)
            if not job_ids:
                continue

            raw = await r.mget([self._job_key(queue, job_id) for job_id in job_ids])
            jobs.extend(Job.model_validate_json(data) for data in raw if data)

        return jobs

    async def get_job_counts(self, queue: str) -> dict[str, int]:
        """Get the number of jobs per state in a queue."""
        r = await self._client()
        return {
            state.value: await r.zcard(self._state_key(queue, state))
            for state in STATE_SETS
        }

    async def get_queue_length(self, queue: str) -> int:
        """Get the number of jobs not yet started (waiting + delayed)."""
        r = await self._client()
        waiting = await r.zcard(self._state_key(queue, JobState.WAITING))
        delayed = await r.zcard(self._state_key(queue, JobState.DELAYED))
        return waiting + delayed

    # ==================== Repeatable registrations ====================

    async def add_repeatable(
        self,
        queue: str,
        name: str,
        pattern: str,
        next_run_at: Optional[datetime] = None,
    ) -> RepeatableJob:
        """Record a recurring registration. One per (job type, pattern)."""
        r = await self._client()
        entry = RepeatableJob(
            key=f"{name}::{pattern}",
            name=name,
            queue=queue,
            pattern=pattern,
            next_run_at=next_run_at,
        )
        await r.hset(self._key(queue, "repeat"), entry.key, entry.model_dump_json())
        return entry

    async def get_repeatables(self, queue: str) -> list[RepeatableJob]:
        """List recurring registrations of a queue."""
        r = await self._client()
        raw = await r.hgetall(self._key(queue, "repeat"))
        return [RepeatableJob.model_validate_json(value) for value in raw.values()]

    async def remove_repeatable_by_key(self, queue: str, key: str) -> bool:
        """Remove a recurring registration."""
        r = await self._client()
        return bool(await r.hdel(self._key(queue, "repeat"), key))

