"""
Ladder Domain Model

Bots, game results and unit events as they flow between the matchmaker,
the executor, the store and the publisher.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from .errors import InvalidGameResultError
from .units import UnitEventType, UnitType

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Baseline rating for bots that have never been ranked
DEFAULT_RATING = 2000


class Race(str, Enum):
    """Race a bot plays, or is assigned for a single game."""

    PROTOSS = "PROTOSS"
    ZERG = "ZERG"
    TERRAN = "TERRAN"
    RANDOM = "RANDOM"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: "str | Race | None") -> "Race":
        """Parse a race name, mapping anything unrecognized to UNKNOWN."""
        if isinstance(value, Race):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN

    @property
    def code(self) -> str:
        return RACE_CODES[self]


RACE_CODES: dict[Race, str] = {
    Race.PROTOSS: "P",
    Race.ZERG: "Z",
    Race.TERRAN: "T",
    Race.RANDOM: "R",
    Race.UNKNOWN: "U",
}

# Races a RANDOM bot can be resolved to
PLAYABLE_RACES = (Race.PROTOSS, Race.TERRAN, Race.ZERG)


class Rank(str, Enum):
    """Presentation tier derived from a bot's rating."""

    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    UNRANKED = "U"

    @classmethod
    def parse(cls, value: "str | Rank | None") -> "Rank":
        if isinstance(value, Rank):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNRANKED

    @property
    def code(self) -> str:
        return self.value


@dataclass
class Bot:
    """A registered bot. Disabled rather than deleted."""

    id: int | None
    enabled: bool
    parent_id: int | None  # Previous version of this bot, if any
    name: str
    race: Race
    binary_path: str
    rank: Rank = Rank.UNRANKED
    rating: int = DEFAULT_RATING
    last_updated: datetime | None = None  # When ratings were last applied
    stats_sequence: int = 0  # Save sequence of the last result folded into stats
    last_played: datetime | None = None

    def __post_init__(self):
        self.race = Race.parse(self.race)
        self.rank = Rank.parse(self.rank)

    def same_as(self, other: "Bot | None") -> bool:
        """Same registered bot, or the same object for unregistered bots."""
        if other is None:
            return False
        if self.id is None or other.id is None:
            return self is other
        return self.id == other.id


@dataclass(frozen=True)
class Matchup:
    """A selected pair of bots with the races they play this game."""

    bot_a: Bot
    race_a: Race
    bot_b: Bot
    race_b: Race
    map_name: str

    @property
    def bot_ids(self) -> tuple[int, int]:
        return (self.bot_a.id, self.bot_b.id)


@dataclass(frozen=True)
class GameResult:
    """Outcome of one completed game. Immutable once created."""

    id: str
    time: datetime
    game_realtime: float  # Seconds of wall-clock time
    realtime_timeout: bool
    frame_timeout: bool
    map: str
    bot_a: Bot
    race_a: Race
    bot_b: Bot
    race_b: Race
    winner: Bot | None = None
    loser: Bot | None = None
    bot_a_crashed: bool = False
    bot_b_crashed: bool = False
    game_hash: str = ""
    frame_count: int | None = None

    def __post_init__(self):
        if self.bot_a.same_as(self.bot_b):
            raise InvalidGameResultError(f"Game {self.id}: a bot cannot play itself")
        if (self.winner is None) != (self.loser is None):
            raise InvalidGameResultError(
                f"Game {self.id}: winner and loser must both be set or both unset"
            )
        if self.winner is not None:
            if self.winner.same_as(self.loser):
                raise InvalidGameResultError(f"Game {self.id}: winner and loser are the same bot")
            participants = (self.bot_a, self.bot_b)
            for bot in (self.winner, self.loser):
                if not any(bot.same_as(p) for p in participants):
                    raise InvalidGameResultError(
                        f"Game {self.id}: {bot.name} did not play in this game"
                    )

    @property
    def invalid(self) -> bool:
        """True when a timeout voids the outcome."""
        return self.realtime_timeout or self.frame_timeout

    @property
    def decisive(self) -> bool:
        return self.winner is not None

    @property
    def ended_at(self) -> int:
        """Epoch seconds, floored (negative before 1970)."""
        return (self.time - EPOCH) // timedelta(seconds=1)


@dataclass(frozen=True)
class GameEvent:
    """Occurrence count of one unit event type in one game."""

    game_id: str
    unit: UnitType
    event: UnitEventType
    amount: int


@dataclass
class EventTrace:
    """Executor-ordered unit events of a single game, before persistence."""

    events: list[tuple[UnitType, UnitEventType]] = field(default_factory=list)

    def add(self, unit: UnitType, event: UnitEventType, count: int = 1) -> None:
        self.events.extend([(unit, event)] * count)

    def to_game_events(self, game_id: str) -> list[GameEvent]:
        """Collapse the trace into counts, keeping first-occurrence order."""
        counts: dict[tuple[UnitType, UnitEventType], int] = {}
        for key in self.events:
            counts[key] = counts.get(key, 0) + 1
        return [
            GameEvent(game_id=game_id, unit=unit, event=event, amount=amount)
            for (unit, event), amount in counts.items()
        ]
