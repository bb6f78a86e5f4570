"""
Game Execution

Engines that play games and the executor that turns their outcomes into
game results.
"""

from .engine import (
    CommandEngine,
    EngineOutcome,
    GameEngine,
    GameLimits,
    RandomEngine,
)
from .executor import ExecutedGame, GameExecutor, compute_game_hash

__all__ = [
    "GameEngine",
    "GameLimits",
    "EngineOutcome",
    "RandomEngine",
    "CommandEngine",
    "GameExecutor",
    "ExecutedGame",
    "compute_game_hash",
]
