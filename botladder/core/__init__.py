"""
Ladder Core

Domain types and errors shared by every ladder component.
"""

from .errors import (
    BotDisabledError,
    ConfigError,
    GameExecutionError,
    InvalidGameResultError,
    LadderError,
    NoEligibleMatchupError,
    PersistenceError,
    PublishError,
    WorkerDiedError,
)
from .models import (
    DEFAULT_RATING,
    PLAYABLE_RACES,
    Bot,
    EventTrace,
    GameEvent,
    GameResult,
    Matchup,
    Race,
    Rank,
)
from .units import UnitEventType, UnitType

__all__ = [
    # Errors
    "LadderError",
    "ConfigError",
    "NoEligibleMatchupError",
    "GameExecutionError",
    "BotDisabledError",
    "InvalidGameResultError",
    "PersistenceError",
    "PublishError",
    "WorkerDiedError",
    # Models
    "DEFAULT_RATING",
    "PLAYABLE_RACES",
    "Bot",
    "EventTrace",
    "GameEvent",
    "GameResult",
    "Matchup",
    "Race",
    "Rank",
    # Codes
    "UnitType",
    "UnitEventType",
]
