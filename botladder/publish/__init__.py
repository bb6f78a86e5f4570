"""
Publishing

JSON serializers for publish snapshots and the sinks they write to.
"""

from .serializer import BotStatsPublisher, GameResultsPublisher, order_bots
from .sink import DirectorySink, MemorySink, Publisher

__all__ = [
    "GameResultsPublisher",
    "BotStatsPublisher",
    "order_bots",
    "Publisher",
    "DirectorySink",
    "MemorySink",
]
