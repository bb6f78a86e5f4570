"""
Ladder Errors

Exception hierarchy shared by the scheduling and publishing pipelines.
"""


class LadderError(Exception):
    """Base class for all ladder errors."""


class ConfigError(LadderError):
    """Configuration is missing or invalid."""


class NoEligibleMatchupError(LadderError):
    """Fewer than two bots are enabled and not already in a game."""


class GameExecutionError(LadderError):
    """The game engine could not produce a result for a matchup."""


class BotDisabledError(GameExecutionError):
    """A bot selected for a matchup was disabled before the game started."""

    def __init__(self, bot_name: str):
        super().__init__(f"Bot {bot_name} is disabled")
        self.bot_name = bot_name


class InvalidGameResultError(LadderError):
    """A game result violates the winner/loser/participant invariants."""


class PersistenceError(LadderError):
    """Writing to the store failed, possibly after several attempts."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class PublishError(LadderError):
    """Writing a publish artifact through a sink failed."""


class WorkerDiedError(LadderError):
    """A pool worker terminated on an unrecognized fault."""

    def __init__(self, worker_name: str, cause: BaseException):
        super().__init__(f"Worker {worker_name} died: {cause!r}")
        self.worker_name = worker_name
