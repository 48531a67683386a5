"""Queue module for background job processing.

Features:
- Priority queues using Redis sorted sets
- Delayed jobs and retry with fixed or exponential backoff
- Idempotent job ids
- Retention of finished jobs by count and age
"""

from .types import (
    QueueName,
    JobType,
    JobPriority,
    JobState,
    SyncMode,
    BackoffPolicy,
    RetentionPolicy,
    JobOptions,
    Job,
    RepeatableJob,
    QUEUE_DEFAULTS,
)
from .job_store import JobStore

__all__ = [
    'QueueName',
    'JobType',
    'JobPriority',
    'JobState',
    'SyncMode',
    'BackoffPolicy',
    'RetentionPolicy',
    'JobOptions',
    'Job',
    'RepeatableJob',
    'QUEUE_DEFAULTS',
    'JobStore',
]
