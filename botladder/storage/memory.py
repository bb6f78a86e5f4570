"""
In-Memory Store

Thread-safe storage engine that keeps everything in process memory and
answers the aggregate queries as folds over the stored records.
"""

import itertools
import threading
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

from ..core.errors import PersistenceError
from ..core.models import Bot, GameEvent, GameResult, Race
from .base import BotRaceVsRace, BotStat, BotVsBotWonGames, MapStat, RankingUpdate


@dataclass
class _StoredGame:
    result: GameResult
    events: list[GameEvent]
    sequence: int


class MemoryStore:
    """
    Storage engine backed by plain dictionaries.

    Every public method takes the store lock, so each call observes and
    produces a consistent state. Returned bots are copies; mutating them has
    no effect on the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._bots: dict[int, Bot] = {}
        self._games: dict[str, _StoredGame] = {}
        self._in_flight: set[int] = set()
        self._ids = itertools.count(1)
        self._last_sequence = 0

    # Bots

    def add_bot(self, bot: Bot) -> Bot:
        with self._lock:
            if any(b.name == bot.name for b in self._bots.values()):
                raise PersistenceError(f"A bot named {bot.name} already exists")
            stored = replace(bot, id=next(self._ids))
            self._bots[stored.id] = stored
            return replace(stored)

    def get_bot(self, bot_id: int) -> Bot | None:
        with self._lock:
            bot = self._bots.get(bot_id)
            return replace(bot) if bot else None

    def find_bot(self, name: str) -> Bot | None:
        with self._lock:
            for bot in self._bots.values():
                if bot.name == name:
                    return replace(bot)
            return None

    def list_enabled_bots(self) -> list[Bot]:
        with self._lock:
            return [replace(b) for b in self._bots.values() if b.enabled]

    def set_enabled(self, bot_id: int, enabled: bool) -> None:
        with self._lock:
            self._require_bot(bot_id).enabled = enabled

    def _require_bot(self, bot_id: int) -> Bot:
        bot = self._bots.get(bot_id)
        if bot is None:
            raise PersistenceError(f"Unknown bot id {bot_id}")
        return bot

    # In-flight reservations

    def mark_in_flight(self, bot_ids: Iterable[int]) -> bool:
        ids = set(bot_ids)
        with self._lock:
            if ids & self._in_flight:
                return False
            self._in_flight |= ids
            return True

    def clear_in_flight(self, bot_ids: Iterable[int]) -> None:
        with self._lock:
            self._in_flight -= set(bot_ids)

    def in_flight(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._in_flight)

    # Game results

    def save(self, result: GameResult, events: list[GameEvent]) -> None:
        with self._lock:
            if result.id in self._games:
                raise PersistenceError(f"Game {result.id} was already recorded")
            for bot in (result.bot_a, result.bot_b):
                self._require_bot(bot.id)
            for event in events:
                if event.game_id != result.id:
                    raise PersistenceError(
                        f"Event for game {event.game_id} saved with game {result.id}"
                    )
            self._last_sequence += 1
            self._games[result.id] = _StoredGame(
                result=result, events=list(events), sequence=self._last_sequence
            )
            for bot in (result.bot_a, result.bot_b):
                stored = self._bots[bot.id]
                if stored.last_played is None or stored.last_played < result.time:
                    stored.last_played = result.time

    def _current(self, result: GameResult) -> GameResult:
        """Re-attach the current state of the bots to a stored result."""

        def bot(b: Bot | None) -> Bot | None:
            return replace(self._bots[b.id]) if b is not None else None

        return replace(
            result,
            bot_a=bot(result.bot_a),
            bot_b=bot(result.bot_b),
            winner=bot(result.winner),
            loser=bot(result.loser),
        )

    def _ordered_games(self, since: datetime | None = None) -> list[_StoredGame]:
        games = [
            g for g in self._games.values() if since is None or g.result.time > since
        ]
        games.sort(key=lambda g: (g.result.time, g.result.id))
        return games

    def game_results_since(self, timestamp: datetime | None) -> list[GameResult]:
        with self._lock:
            return [self._current(g.result) for g in self._ordered_games(timestamp)]

    def last_sequence(self) -> int:
        with self._lock:
            return self._last_sequence

    def games_since_bot_watermark(self, up_to: int | None = None) -> list[BotStat]:
        with self._lock:
            stats = []
            for bot_id in sorted(self._bots):
                bot = self._bots[bot_id]
                if not bot.enabled:
                    continue
                won = lost = 0
                for game in self._games.values():
                    if game.sequence <= bot.stats_sequence:
                        continue
                    if up_to is not None and game.sequence > up_to:
                        continue
                    result = game.result
                    if bot.same_as(result.winner):
                        won += 1
                    elif bot.same_as(result.loser):
                        lost += 1
                if won or lost:
                    stats.append(BotStat(bot=replace(bot), won=won, lost=lost))
            return stats

    def map_stats(self, bot: Bot) -> list[MapStat]:
        with self._lock:
            tally: dict[str, list[int]] = defaultdict(lambda: [0, 0])
            for game in self._ordered_games():
                result = game.result
                if bot.same_as(result.winner):
                    tally[result.map][0] += 1
                elif bot.same_as(result.loser):
                    tally[result.map][1] += 1
            return [MapStat(map=m, won=w, lost=l) for m, (w, l) in sorted(tally.items())]

    def race_vs_race_stats(self) -> list[BotRaceVsRace]:
        with self._lock:
            tally: dict[tuple[int, Race, Race], list[int]] = defaultdict(lambda: [0, 0])
            for game in self._ordered_games():
                result = game.result
                sides = (
                    (result.bot_a, result.race_a, result.race_b),
                    (result.bot_b, result.race_b, result.race_a),
                )
                for bot, race, enemy_race in sides:
                    if not self._bots[bot.id].enabled:
                        continue
                    counts = tally[(bot.id, race, enemy_race)]
                    if bot.same_as(result.winner):
                        counts[0] += 1
                    elif bot.same_as(result.loser):
                        counts[1] += 1
            return [
                BotRaceVsRace(
                    bot=replace(self._bots[bot_id]),
                    race=race,
                    enemy_race=enemy_race,
                    won=won,
                    lost=lost,
                )
                for (bot_id, race, enemy_race), (won, lost) in sorted(
                    tally.items(), key=lambda item: (item[0][0], item[0][1].value, item[0][2].value)
                )
            ]

    def aggregate_events_with_threshold(
        self, min_count: int, since: datetime | None = None
    ) -> list[GameEvent]:
        with self._lock:
            aggregated = []
            for game in self._ordered_games(since):
                sums: dict[tuple, int] = {}
                for event in game.events:
                    key = (event.unit, event.event)
                    sums[key] = sums.get(key, 0) + event.amount
                aggregated.extend(
                    GameEvent(game_id=game.result.id, unit=unit, event=kind, amount=amount)
                    for (unit, kind), amount in sums.items()
                    if amount >= min_count
                )
            return aggregated

    def update_rankings(
        self, updates: list[RankingUpdate], watermark: datetime, sequence: int
    ) -> None:
        with self._lock:
            for update in updates:
                self._require_bot(update.bot_id)
            for update in updates:
                bot = self._bots[update.bot_id]
                bot.rating = update.new_rating
                bot.rank = update.rank
                bot.last_updated = watermark
                bot.stats_sequence = sequence

    # Ladder-wide figures

    def count_crashes(self) -> int:
        with self._lock:
            return sum(
                1
                for g in self._games.values()
                if g.result.bot_a_crashed or g.result.bot_b_crashed
            )

    def average_game_realtime(self) -> float | None:
        with self._lock:
            times = [g.result.game_realtime for g in self._games.values() if g.result.decisive]
            return sum(times) / len(times) if times else None

    def bot_vs_bot_wins(self, after: datetime | None = None) -> list[BotVsBotWonGames]:
        with self._lock:
            counts: dict[tuple[int, int], int] = defaultdict(int)
            for game in self._games.values():
                result = game.result
                if not result.decisive or (after is not None and result.time < after):
                    continue
                counts[(result.winner.id, result.loser.id)] += 1
            return [
                BotVsBotWonGames(
                    bot_a=replace(self._bots[a]), bot_b=replace(self._bots[b]), won=won
                )
                for (a, b), won in sorted(counts.items())
            ]

    def count_wins_by_race(self, winner_race: Race, loser_race: Race) -> int:
        with self._lock:
            total = 0
            for game in self._games.values():
                result = game.result
                if not result.decisive:
                    continue
                if result.winner.same_as(result.bot_a):
                    races = (result.race_a, result.race_b)
                else:
                    races = (result.race_b, result.race_a)
                if races == (winner_race, loser_race):
                    total += 1
            return total
