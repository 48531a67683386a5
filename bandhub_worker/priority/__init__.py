"""Job priority policy and the featured band snapshot it consults."""

from .featured_cache import FeaturedBandCache
from .rules import PriorityContext, PriorityRule, PriorityPolicy, PRIORITY_RULES

__all__ = [
    'FeaturedBandCache',
    'PriorityContext',
    'PriorityRule',
    'PriorityPolicy',
    'PRIORITY_RULES',
]
