"""
Storage Port

The narrow query/command interface the matchmaker, the recorder and the
stats aggregator use to reach persisted bots, results and events.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable

from ..core.models import Bot, GameEvent, GameResult, Race, Rank


@dataclass(frozen=True)
class BotStat:
    """Decisive games of a bot since its stats watermark."""

    bot: Bot
    won: int
    lost: int


@dataclass(frozen=True)
class MapStat:
    """Wins and losses of one bot on one map."""

    map: str
    won: int
    lost: int


@dataclass(frozen=True)
class BotRaceVsRace:
    """Wins and losses of a bot playing `race` against `enemy_race`."""

    bot: Bot
    race: Race
    enemy_race: Race
    won: int
    lost: int


@dataclass(frozen=True)
class BotVsBotWonGames:
    """How often `bot_a` beat `bot_b`."""

    bot_a: Bot
    bot_b: Bot
    won: int


@dataclass(frozen=True)
class RankingUpdate:
    """New rating and tier for a bot after a publish cycle."""

    bot_id: int
    old_rating: int
    new_rating: int
    rank: Rank
    won: int
    lost: int

    @property
    def rating_change(self) -> int:
        return self.new_rating - self.old_rating


@runtime_checkable
class LadderStore(Protocol):
    """Protocol for ladder storage engines."""

    # Bots

    def add_bot(self, bot: Bot) -> Bot:
        """Register a bot and return it with its assigned id."""
        ...

    def get_bot(self, bot_id: int) -> Bot | None:
        ...

    def find_bot(self, name: str) -> Bot | None:
        ...

    def list_enabled_bots(self) -> list[Bot]:
        ...

    def set_enabled(self, bot_id: int, enabled: bool) -> None:
        ...

    # In-flight reservations

    def mark_in_flight(self, bot_ids: Iterable[int]) -> bool:
        """
        Reserve all of the given bots, or none of them.

        Returns:
            False if any of the bots is already in flight.
        """
        ...

    def clear_in_flight(self, bot_ids: Iterable[int]) -> None:
        ...

    def in_flight(self) -> frozenset[int]:
        ...

    # Game results

    def save(self, result: GameResult, events: list[GameEvent]) -> None:
        """
        Persist a result with its events atomically, in event order, and
        assign it the next save sequence.
        """
        ...

    def game_results_since(self, timestamp: datetime | None) -> list[GameResult]:
        ...

    def last_sequence(self) -> int:
        """Save sequence of the most recently stored result, 0 when there is none."""
        ...

    def games_since_bot_watermark(self, up_to: int | None = None) -> list[BotStat]:
        """
        Decisive games of each enabled bot saved after its stats watermark.

        Args:
            up_to: Only count results with a save sequence at or below this
        """
        ...

    def map_stats(self, bot: Bot) -> list[MapStat]:
        ...

    def race_vs_race_stats(self) -> list[BotRaceVsRace]:
        ...

    def aggregate_events_with_threshold(
        self, min_count: int, since: datetime | None = None
    ) -> list[GameEvent]:
        ...

    def update_rankings(
        self, updates: list[RankingUpdate], watermark: datetime, sequence: int
    ) -> None:
        """
        Write new ratings/tiers and advance the stats watermark of each bot.

        Args:
            updates: Ranking updates to apply
            watermark: Time the updates were computed at
            sequence: Save sequence up to which results were counted
        """
        ...

    # Ladder-wide figures

    def count_crashes(self) -> int:
        ...

    def average_game_realtime(self) -> float | None:
        ...

    def bot_vs_bot_wins(self, after: datetime | None = None) -> list[BotVsBotWonGames]:
        ...

    def count_wins_by_race(self, winner_race: Race, loser_race: Race) -> int:
        ...
