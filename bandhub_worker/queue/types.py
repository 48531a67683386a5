"""Queue, job and priority types shared by the store, facade and processors."""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class QueueName(str, Enum):
    """The fixed set of queues."""
    VIDEO_SYNC = "video-sync"
    VIDEO_PROCESSING = "video-processing"
    MAINTENANCE = "maintenance"


class JobType(str, Enum):
    """Job kinds, used as the job name in the store."""
    SYNC_BAND = "sync-band"
    SYNC_ALL_BANDS = "sync-all-bands"
    PROCESS_VIDEO = "process-video"
    CLEANUP_VIDEOS = "cleanup-videos"
    UPDATE_STATS = "update-stats"
    BACKFILL_CREATORS = "backfill-creators"
    BACKFILL_BANDS = "backfill-bands"
    MATCH_VIDEOS = "match-videos"
    PROMOTE_VIDEOS = "promote-videos"
    CALCULATE_TRENDING = "calculate-trending"


class JobPriority(IntEnum):
    """Priority tiers. Lower value is serviced first."""
    CRITICAL = 1
    HIGH = 5
    NORMAL = 10
    LOW = 15

    @classmethod
    def bucket(cls, priority: int) -> "JobPriority":
        """Map an arbitrary ordinal (e.g. a staggered NORMAL + 3) onto its tier."""
        if priority <= cls.CRITICAL:
            return cls.CRITICAL
        if priority <= cls.HIGH:
            return cls.HIGH
        if priority <= cls.NORMAL:
            return cls.NORMAL
        return cls.LOW


class JobState(str, Enum):
    """Job lifecycle states."""
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncMode(str, Enum):
    INCREMENTAL = "INCREMENTAL_SYNC"
    FULL = "FULL_SYNC"


class BackoffPolicy(BaseModel):
    """Retry delay policy."""
    type: Literal["fixed", "exponential"] = "exponential"
    delay_ms: int = Field(default=10_000, ge=0)

    def delay_for(self, attempt: int) -> int:
        """Delay in ms before retrying after the given (1-based) attempt."""
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * (2 ** max(attempt - 1, 0))


class RetentionPolicy(BaseModel):
    """How many finished jobs to keep, and for how long."""
    count: int = Field(default=100, ge=0)
    age_seconds: int = Field(default=86_400, ge=0)


class JobOptions(BaseModel):
    """Per-job submission options."""
    priority: int = Field(default=JobPriority.NORMAL, ge=0)
    attempts: int = Field(default=1, ge=1)
    backoff: Optional[BackoffPolicy] = None
    delay_ms: int = Field(default=0, ge=0)
    job_id: Optional[str] = None
    remove_on_complete: RetentionPolicy = Field(default_factory=RetentionPolicy)
    remove_on_fail: RetentionPolicy = Field(
        default_factory=lambda: RetentionPolicy(count=500, age_seconds=604_800)
    )


# Queue-specific defaults, merged under caller options
QUEUE_DEFAULTS: dict[QueueName, dict[str, Any]] = {
    QueueName.VIDEO_SYNC: {
        "attempts": 3,
        "backoff": {"type": "exponential", "delay_ms": 30_000},
    },
    QueueName.VIDEO_PROCESSING: {
        "attempts": 2,
        "backoff": {"type": "fixed", "delay_ms": 5_000},
    },
    QueueName.MAINTENANCE: {
        "attempts": 1,  # maintenance is not blindly retried
    },
}


class Job(BaseModel):
    """A job in the store."""
    id: str
    name: str
    queue: str
    data: dict
    opts: JobOptions
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    progress: Optional[dict] = None
    return_value: Optional[dict] = None
    failed_reason: Optional[str] = None
    error_history: list[str] = []
    created_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def priority(self) -> int:
        return self.opts.priority


class RepeatableJob(BaseModel):
    """A recurring registration recorded in the store."""
    key: str
    name: str
    queue: str
    pattern: str
    next_run_at: Optional[datetime] = None
