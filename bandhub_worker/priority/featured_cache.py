"""In-process snapshot of featured band ids.

The snapshot is replaced wholesale on every refresh, so readers always see
either the previous or the new set, never a partial one. A failed refresh
keeps the previous snapshot.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from bandhub_worker.config import get_settings

logger = logging.getLogger(__name__)


class FeaturedBandSource(Protocol):
    async def get_featured_band_ids(self) -> list[str]: ...


class FeaturedBandCache:
    """Periodically refreshed set of featured band ids."""

    def __init__(
        self,
        source: FeaturedBandSource,
        refresh_interval_seconds: Optional[float] = None,
    ):
        self._source = source
        self._interval = (
            refresh_interval_seconds
            if refresh_interval_seconds is not None
            else get_settings().featured_refresh_interval_seconds
        )
        self._ids: frozenset[str] = frozenset()
        self._task: Optional[asyncio.Task] = None
        self.last_refreshed_at: Optional[datetime] = None

    @property
    def size(self) -> int:
        return len(self._ids)

    def contains(self, band_id: Optional[str]) -> bool:
        """Check membership. An empty or not yet loaded cache contains nothing."""
        if not band_id:
            return False
        return band_id in self._ids

    async def refresh(self) -> bool:
        """Reload featured ids from the source. Returns False if the load failed."""
        try:
            ids = await self._source.get_featured_band_ids()
        except Exception as e:
            logger.error(f"Failed to refresh featured bands cache: {e}")
            return False

        self._ids = frozenset(str(band_id) for band_id in ids)
        self.last_refreshed_at = datetime.now(timezone.utc)
        logger.debug(f"Refreshed featured bands cache: {len(self._ids)} bands")
        return True

    async def start(self) -> None:
        """Load the first snapshot, then keep refreshing in the background."""
        await self.refresh()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.refresh()
