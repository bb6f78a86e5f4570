"""
Ladder Statistics

Aggregation of persisted results and the rating model.
"""

from .aggregator import PublishSnapshot, StatsAggregator
from .rating import RANK_THRESHOLDS, EloRating, rank_for_rating

__all__ = [
    "StatsAggregator",
    "PublishSnapshot",
    "EloRating",
    "RANK_THRESHOLDS",
    "rank_for_rating",
]
