"""
Ladder Storage

The storage port and its engines.
"""

from .base import (
    BotRaceVsRace,
    BotStat,
    BotVsBotWonGames,
    LadderStore,
    MapStat,
    RankingUpdate,
)
from .memory import MemoryStore
from .sql import SqlStore

__all__ = [
    "LadderStore",
    "BotStat",
    "MapStat",
    "BotRaceVsRace",
    "BotVsBotWonGames",
    "RankingUpdate",
    "MemoryStore",
    "SqlStore",
]
