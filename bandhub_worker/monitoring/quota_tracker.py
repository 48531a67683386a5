"""YouTube Data API quota tracking.

Advisory only: usage is recorded and reported, calls are never blocked here.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from enum import Enum

from bandhub_worker.config import get_settings


class QuotaStatus(Enum):
    OK = "ok"
    WARNING = "warning"  # 70-90% used
    CRITICAL = "critical"  # 90-100% used
    EXCEEDED = "exceeded"  # >=100%


@dataclass
class QuotaEntry:
    """Single YouTube API call."""
    timestamp: datetime
    operation: str  # search, videos, channels, playlistItems
    units: int
    band_id: Optional[str] = None


@dataclass
class QuotaCheck:
    """Result of a quota check."""
    status: QuotaStatus
    daily_used: int
    daily_limit: int
    daily_remaining: int
    message: str


# Quota units per API method
OPERATION_COSTS = {
    "search": 100,
    "videos": 1,
    "channels": 1,
    "playlistItems": 1,
}


class QuotaTracker:
    """Track YouTube API quota usage per UTC day."""

    def __init__(
        self,
        daily_limit_units: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.daily_limit = daily_limit_units if daily_limit_units is not None else get_settings().youtube_daily_quota
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: list[QuotaEntry] = []

    def log_usage(self, operation: str, band_id: Optional[str] = None) -> QuotaEntry:
        """
        Record one API call.

        Args:
            operation: API method name (search, videos, ...)
            band_id: Band the call was made for, if any

        Returns:
            QuotaEntry with the unit cost
        """
        entry = QuotaEntry(
            timestamp=self._clock(),
            operation=operation,
            units=OPERATION_COSTS.get(operation, 1),
            band_id=band_id,
        )
        self._entries.append(entry)
        self._prune()
        return entry

    def _prune(self) -> None:
        cutoff = self._clock() - timedelta(days=8)
        if self._entries and self._entries[0].timestamp < cutoff:
            self._entries = [e for e in self._entries if e.timestamp >= cutoff]

    def daily_used(self) -> int:
        today_start = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)
        return sum(e.units for e in self._entries if e.timestamp >= today_start)

    def check_quota(self) -> QuotaCheck:
        """Check today's usage against the daily limit."""
        used = self.daily_used()
        pct = used / self.daily_limit if self.daily_limit > 0 else 0

        if pct >= 1.0:
            status = QuotaStatus.EXCEEDED
            message = "Daily YouTube quota exhausted"
        elif pct >= 0.9:
            status = QuotaStatus.CRITICAL
            message = "YouTube quota critical (>90%)"
        elif pct >= 0.7:
            status = QuotaStatus.WARNING
            message = "YouTube quota warning (>70%)"
        else:
            status = QuotaStatus.OK
            message = "YouTube quota OK"

        return QuotaCheck(
            status=status,
            daily_used=used,
            daily_limit=self.daily_limit,
            daily_remaining=max(0, self.daily_limit - used),
            message=message,
        )

    def get_usage_summary(self, days: int = 7) -> dict:
        """Usage for the last N days, by operation and by day."""
        cutoff = self._clock() - timedelta(days=days)
        recent = [e for e in self._entries if e.timestamp >= cutoff]

        by_operation = {}
        by_day = {}

        for entry in recent:
            if entry.operation not in by_operation:
                by_operation[entry.operation] = {"calls": 0, "units": 0}
            by_operation[entry.operation]["calls"] += 1
            by_operation[entry.operation]["units"] += entry.units

            day = entry.timestamp.strftime("%Y-%m-%d")
            if day not in by_day:
                by_day[day] = {"calls": 0, "units": 0}
            by_day[day]["calls"] += 1
            by_day[day]["units"] += entry.units

        return {
            "period_days": days,
            "total_calls": len(recent),
            "total_units": sum(e.units for e in recent),
            "by_operation": by_operation,
            "by_day": by_day,
        }
