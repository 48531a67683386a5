"""Cron-driven job scheduling."""

from .sync_scheduler import SCHEDULE, ScheduleEntry, SyncScheduler

__all__ = ['SCHEDULE', 'ScheduleEntry', 'SyncScheduler']
