"""Priority policy for background jobs.

Maps a job type and payload to a priority tier:
- An explicit `priority` on the payload always wins
- Otherwise the ordered rules below are evaluated, first match wins
- Nothing matches: NORMAL

Context flags are derived from the payload:
- is_featured_band: payload `band_id` is in the featured snapshot
- is_recent_video: payload `video.published_at` is less than 24h old
- is_bulk_operation: payload `batch_size` or `limit` exceeds 10
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
import logging

from dateutil import parser as date_parser

from bandhub_worker.priority.featured_cache import FeaturedBandCache
from bandhub_worker.queue.types import JobPriority, JobType

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(hours=24)
BULK_THRESHOLD = 10


@dataclass(frozen=True)
class PriorityContext:
    """Facts about a job used by the priority rules."""
    is_featured_band: bool = False
    is_recent_video: bool = False
    is_bulk_operation: bool = False


@dataclass(frozen=True)
class PriorityRule:
    condition: Callable[[str, PriorityContext], bool]
    priority: JobPriority
    description: str


PRIORITY_RULES: tuple[PriorityRule, ...] = (
    PriorityRule(
        condition=lambda job_type, ctx: ctx.is_featured_band,
        priority=JobPriority.CRITICAL,
        description="Featured band jobs",
    ),
    PriorityRule(
        condition=lambda job_type, ctx: ctx.is_recent_video,
        priority=JobPriority.HIGH,
        description="Recent video processing",
    ),
    PriorityRule(
        condition=lambda job_type, ctx: ctx.is_bulk_operation,
        priority=JobPriority.LOW,
        description="Bulk operations",
    ),
    PriorityRule(
        condition=lambda job_type, ctx: job_type == JobType.SYNC_ALL_BANDS,
        priority=JobPriority.LOW,
        description="Sync all bands",
    ),
    PriorityRule(
        condition=lambda job_type, ctx: job_type == JobType.CLEANUP_VIDEOS,
        priority=JobPriority.LOW,
        description="Cleanup operations",
    ),
    PriorityRule(
        condition=lambda job_type, ctx: job_type == JobType.MATCH_VIDEOS,
        priority=JobPriority.NORMAL,
        description="Match videos",
    ),
    PriorityRule(
        condition=lambda job_type, ctx: job_type in (JobType.BACKFILL_CREATORS, JobType.BACKFILL_BANDS),
        priority=JobPriority.LOW,
        description="Backfill operations",
    ),
)


def parse_published_at(value: Any) -> Optional[datetime]:
    """Parse a publish timestamp. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class PriorityPolicy:
    """Resolves job priority from the ordered rules and the featured snapshot."""

    def __init__(
        self,
        featured: FeaturedBandCache,
        clock: Optional[Callable[[], datetime]] = None,
        rules: tuple[PriorityRule, ...] = PRIORITY_RULES,
    ):
        self.featured = featured
        self.rules = rules
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def is_featured_band(self, band_id: Optional[str]) -> bool:
        return self.featured.contains(band_id)

    def is_recent(self, published_at: Any) -> bool:
        """True if the timestamp is within the last 24 hours. Unparseable is not recent."""
        dt = parse_published_at(published_at)
        if dt is None:
            return False
        return dt > self._clock() - RECENT_WINDOW

    def build_context(self, job_type: str, payload: dict) -> PriorityContext:
        band_id = payload.get("band_id")
        is_featured = isinstance(band_id, str) and self.featured.contains(band_id)

        video = payload.get("video")
        is_recent = isinstance(video, dict) and self.is_recent(video.get("published_at"))

        # TODO: replace duck-typing on batch_size/limit with an explicit bulk flag per job type
        size = payload.get("batch_size") or payload.get("limit")
        is_bulk = isinstance(size, (int, float)) and size > BULK_THRESHOLD

        return PriorityContext(
            is_featured_band=is_featured,
            is_recent_video=is_recent,
            is_bulk_operation=is_bulk,
        )

    def resolve_priority(
        self,
        job_type: str,
        payload: dict,
        context: Optional[PriorityContext] = None,
    ) -> int:
        """
        Determine the priority for a job.

        Args:
            job_type: The job's type
            payload: The job's data; a non-None `priority` key is returned as-is
            context: Precomputed context, built from the payload when omitted

        Returns:
            Priority ordinal (lower is more urgent)
        """
        explicit = payload.get("priority")
        if explicit is not None:
            return explicit

        ctx = context or self.build_context(job_type, payload)
        for rule in self.rules:
            if rule.condition(job_type, ctx):
                logger.debug(f"Priority rule matched: {rule.description} -> {rule.priority.name}")
                return rule.priority

        return JobPriority.NORMAL
