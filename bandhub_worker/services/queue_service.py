"""Job submission facade.

Builds job payloads, resolves their priority through the priority policy and
submits them to the job store with queue-specific retry/backoff defaults.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from bandhub_worker.errors import ConfigurationError, InvalidStateError, JobNotFoundError
from bandhub_worker.priority.rules import PriorityPolicy
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import (
    QUEUE_DEFAULTS,
    Job,
    JobOptions,
    JobPriority,
    JobState,
    JobType,
    QueueName,
    SyncMode,
)

logger = logging.getLogger(__name__)

REPRIORITIZABLE_STATES = (JobState.WAITING, JobState.DELAYED)

OptionOverrides = Union[JobOptions, Mapping[str, Any], None]


def _priority_label(priority: int) -> str:
    return JobPriority.bucket(priority).name


class QueueService:
    """Submits jobs with automatic priority determination."""

    def __init__(
        self,
        store: JobStore,
        policy: PriorityPolicy,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.policy = policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def resolve_queue(queue_name: Union[str, QueueName]) -> QueueName:
        try:
            return QueueName(queue_name)
        except ValueError:
            raise ConfigurationError(f"Queue not found: {queue_name}") from None

    @staticmethod
    def build_options(
        queue: QueueName,
        priority: int,
        overrides: OptionOverrides = None,
    ) -> JobOptions:
        """Queue defaults, then the computed priority, then caller overrides."""
        if isinstance(overrides, JobOptions):
            overrides = overrides.model_dump(exclude_unset=True)

        merged = {**QUEUE_DEFAULTS[queue], "priority": priority, **dict(overrides or {})}
        try:
            return JobOptions.model_validate(merged)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid job options for {queue.value}: {e}") from e

    async def submit_with_priority(
        self,
        queue_name: Union[str, QueueName],
        job_type: Union[str, JobType],
        payload: dict,
        override_options: OptionOverrides = None,
    ) -> Job:
        """
        Add a job with automatic priority determination.

        Raises:
            ConfigurationError: Unknown queue or malformed options
        """
        queue = self.resolve_queue(queue_name)
        job_type = getattr(job_type, "value", job_type)

        priority = self.policy.resolve_priority(job_type, payload)
        options = self.build_options(queue, priority, override_options)

        logger.info(
            f"Adding job {job_type} to {queue.value} with priority "
            f"{_priority_label(options.priority)} ({options.priority})",
            extra={"queue": queue.value, "job_type": job_type, "priority": options.priority},
        )
        return await self.store.enqueue(queue.value, job_type, payload, options)

    async def submit_band_sync(
        self,
        band_id: str,
        mode: SyncMode = SyncMode.INCREMENTAL,
        triggered_by: str = "system",
        override_priority: Optional[int] = None,
    ) -> Job:
        """Queue a sync of one band. Featured bands jump to CRITICAL."""
        data = {
            "band_id": band_id,
            "mode": SyncMode(mode).value,
            "triggered_by": triggered_by,
            "priority": override_priority,
        }

        if override_priority is not None:
            priority = override_priority
        elif self.policy.is_featured_band(band_id):
            priority = JobPriority.CRITICAL
        else:
            priority = JobPriority.NORMAL

        epoch_ms = int(self._clock().timestamp() * 1000)
        options = self.build_options(
            QueueName.VIDEO_SYNC,
            priority,
            {"job_id": f"sync-{band_id}-{epoch_ms}"},
        )
        return await self.store.enqueue(QueueName.VIDEO_SYNC.value, JobType.SYNC_BAND.value, data, options)

    async def submit_video_processing(
        self,
        payload: dict,
        override_priority: Optional[int] = None,
    ) -> Job:
        """
        Queue processing of one fetched video.

        Priority: CRITICAL for featured bands, HIGH if published in the last
        24 hours, else NORMAL.
        """
        data = {**payload, "priority": override_priority}

        if override_priority is not None:
            priority = override_priority
        elif self.policy.is_featured_band(payload.get("band_id")):
            priority = JobPriority.CRITICAL
        elif self.policy.is_recent((payload.get("video") or {}).get("published_at")):
            priority = JobPriority.HIGH
        else:
            priority = JobPriority.NORMAL

        options = self.build_options(
            QueueName.VIDEO_PROCESSING,
            priority,
            {"attempts": 2, "backoff": {"type": "exponential", "delay_ms": 5_000}},
        )
        return await self.store.enqueue(
            QueueName.VIDEO_PROCESSING.value, JobType.PROCESS_VIDEO.value, data, options
        )

    async def update_job_priority(
        self,
        queue_name: Union[str, QueueName],
        job_id: str,
        new_priority: int,
    ) -> Job:
        """
        Change the priority of a job that has not started yet.

        The store cannot re-score a job in place, so the job is removed and
        re-added with the same data and options, the new priority and the id
        `{job_id}-reprioritized`. A worker dequeuing between the two steps is
        not guarded against.

        Raises:
            JobNotFoundError: No such job
            InvalidStateError: Job is not waiting or delayed
        """
        queue = self.resolve_queue(queue_name)
        job = await self.store.get_job(queue.value, job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")

        if job.state not in REPRIORITIZABLE_STATES:
            raise InvalidStateError(job_id, job.state.value)

        remaining_delay = 0
        if job.state == JobState.DELAYED:
            remaining_delay = await self.store.get_delay_remaining_ms(queue.value, job_id)

        options = job.opts.model_copy(update={
            "priority": new_priority,
            "job_id": f"{job_id}-reprioritized",
            "delay_ms": remaining_delay,
        })

        await self.store.remove(queue.value, job_id)
        new_job = await self.store.enqueue(queue.value, job.name, job.data, options)

        logger.info(
            f"Updated job {job_id} priority to {_priority_label(new_priority)}",
            extra={"job_id": new_job.id, "queue": queue.value, "priority": new_priority},
        )
        return new_job
