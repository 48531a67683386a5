"""Usage monitoring for external APIs."""

from .quota_tracker import OPERATION_COSTS, QuotaCheck, QuotaEntry, QuotaStatus, QuotaTracker

__all__ = ['OPERATION_COSTS', 'QuotaCheck', 'QuotaEntry', 'QuotaStatus', 'QuotaTracker']
