"""Pipeline stage processors, one per job type."""

from bandhub_worker.queue.job_store import JobStore
from bandhub_worker.services.queue_service import QueueService
from bandhub_worker.services.repository import PostgresRepository
from bandhub_worker.services.youtube import YouTubeClient

from .backfill_bands import BackfillBandsProcessor
from .base import BaseProcessor, StageResult
from .cleanup import CleanupProcessor
from .match_videos import MatchVideosProcessor
from .process_video import ProcessVideoProcessor
from .promote_videos import PromoteVideosProcessor
from .sync_all_bands import SyncAllBandsProcessor
from .sync_band import SyncBandProcessor
from .trending_metrics import TrendingMetricsProcessor
from .update_stats import UpdateStatsProcessor


def build_processors(
    store: JobStore,
    repository: PostgresRepository,
    youtube: YouTubeClient,
    queue_service: QueueService,
) -> dict[str, BaseProcessor]:
    """Processors keyed by the job type they handle."""
    processors = [
        SyncAllBandsProcessor(store, repository),
        SyncBandProcessor(store, repository, youtube, queue_service),
        ProcessVideoProcessor(store, repository),
        MatchVideosProcessor(store, repository),
        PromoteVideosProcessor(store, repository),
        CleanupProcessor(store, repository),
        UpdateStatsProcessor(store, repository, youtube),
        TrendingMetricsProcessor(store, repository),
        BackfillBandsProcessor(store, repository, youtube),
    ]
    return {processor.job_type: processor for processor in processors}


__all__ = [
    'BaseProcessor',
    'StageResult',
    'BackfillBandsProcessor',
    'CleanupProcessor',
    'MatchVideosProcessor',
    'ProcessVideoProcessor',
    'PromoteVideosProcessor',
    'SyncAllBandsProcessor',
    'SyncBandProcessor',
    'TrendingMetricsProcessor',
    'UpdateStatsProcessor',
    'build_processors',
]
