"""Common pieces of the pipeline processors."""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from bandhub_worker.errors import PartialBatchError
from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.queue.types import Job


@dataclass
class StageResult:
    """Outcome of one processor run, stored as the job's return value."""
    stage: str
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)
    _started: float = field(default_factory=time.monotonic, repr=False)

    def record_failure(self, record_key: str, cause: Optional[BaseException] = None) -> None:
        """Count a failed record and keep its message; the batch goes on."""
        self.failed += 1
        self.errors.append(str(PartialBatchError(record_key, cause)))

    def finish(self) -> "StageResult":
        self.duration_ms = int((time.monotonic() - self._started) * 1000)
        return self

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("_started")
        details = data.pop("details")
        return {**data, **details}


class BaseProcessor:
    """A handler for one job type."""

    job_type: str = ""

    def __init__(self, store: JobStore):
        self.store = store

    async def report_progress(self, job: Job, stage: str, current: int, total: int, message: str) -> None:
        await self.store.update_progress(job, {
            "stage": stage,
            "current": current,
            "total": total,
            "message": message,
        })

    async def process(self, job: Job) -> dict:
        raise NotImplementedError
