"""
Stats Aggregator

Reads recent results and bot state once per publish cycle and derives the
figures the publishers render: published results, qualifying unit events,
per-map and race-vs-race tallies, and new ratings.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..core.models import PLAYABLE_RACES, Bot, GameEvent, GameResult, Race
from ..storage.base import (
    BotRaceVsRace,
    BotStat,
    BotVsBotWonGames,
    LadderStore,
    MapStat,
    RankingUpdate,
)
from .rating import EloRating, rank_for_rating

logger = logging.getLogger(__name__)


@dataclass
class PublishSnapshot:
    """Everything one publish cycle renders, read at `taken_at`."""

    taken_at: datetime
    bots: list[Bot]  # Enabled bots, with this cycle's rankings applied
    results: list[GameResult]
    events: list[GameEvent]  # Only event groups meeting the threshold
    bot_stats: list[BotStat] = field(default_factory=list)
    map_stats: dict[int, list[MapStat]] = field(default_factory=dict)
    race_vs_race: list[BotRaceVsRace] = field(default_factory=list)
    rankings: list[RankingUpdate] = field(default_factory=list)
    sequence: int = 0  # Save sequence up to which rankings counted results

    # Ladder-wide figures
    head_to_head: list[BotVsBotWonGames] = field(default_factory=list)
    race_wins: dict[tuple[Race, Race], int] = field(default_factory=dict)
    crashes: int = 0
    average_game_realtime: float | None = None

    def events_by_game(self) -> dict[str, list[GameEvent]]:
        grouped: dict[str, list[GameEvent]] = {}
        for event in self.events:
            grouped.setdefault(event.game_id, []).append(event)
        return grouped


class StatsAggregator:
    """
    Builds publish snapshots from the store.

    Only one cycle runs at a time; hold `cycle_lock` across aggregate and
    publish to extend that to the whole cycle.
    """

    def __init__(
        self,
        store: LadderStore,
        rating: EloRating | None = None,
        event_threshold: int = 8,
        window: timedelta | None = timedelta(days=7),
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the aggregator.

        Args:
            store: Storage port to read from
            rating: Rating model for ranking updates
            event_threshold: Minimum occurrences for a published event group
            window: Only results newer than this are published (None = all)
            now: Wall clock
        """
        self.store = store
        self.rating = rating or EloRating()
        self.event_threshold = event_threshold
        self.window = window
        self._now = now
        self.cycle_lock = threading.RLock()

    def aggregate(self, now: datetime | None = None) -> PublishSnapshot:
        """Read the store once and derive this cycle's snapshot."""
        with self.cycle_lock:
            taken_at = now or self._now()
            since = None if self.window is None else taken_at - self.window

            # Results saved after this point wait for the next cycle
            sequence = self.store.last_sequence()
            bots = self.store.list_enabled_bots()
            results = self.store.game_results_since(since)
            events = self.store.aggregate_events_with_threshold(self.event_threshold, since)
            bot_stats = self.store.games_since_bot_watermark(up_to=sequence)
            map_stats = {bot.id: self.store.map_stats(bot) for bot in bots}
            race_vs_race = self.store.race_vs_race_stats()
            head_to_head = self.store.bot_vs_bot_wins(since)
            race_wins = {
                (winner, loser): self.store.count_wins_by_race(winner, loser)
                for winner in PLAYABLE_RACES
                for loser in PLAYABLE_RACES
            }

            rankings = self.compute_rankings(bots, bot_stats)
            by_id = {update.bot_id: update for update in rankings}
            ranked_bots = [
                replace(bot, rating=by_id[bot.id].new_rating, rank=by_id[bot.id].rank)
                if bot.id in by_id
                else bot
                for bot in bots
            ]

            logger.info(
                f"Aggregated {len(results)} results, {len(events)} event groups, "
                f"{len(rankings)} ranking updates"
            )
            return PublishSnapshot(
                taken_at=taken_at,
                bots=ranked_bots,
                results=results,
                events=events,
                bot_stats=bot_stats,
                map_stats=map_stats,
                race_vs_race=race_vs_race,
                rankings=rankings,
                sequence=sequence,
                head_to_head=head_to_head,
                race_wins=race_wins,
                crashes=self.store.count_crashes(),
                average_game_realtime=self.store.average_game_realtime(),
            )

    def compute_rankings(self, bots: list[Bot], bot_stats: list[BotStat]) -> list[RankingUpdate]:
        """New rating and tier for every bot with decisive games since its watermark."""
        updates = []
        for stat in bot_stats:
            others = [bot.rating for bot in bots if bot.id != stat.bot.id]
            new_rating = self.rating.new_rating(
                stat.bot.rating, stat.won, stat.lost, self.rating.field_rating(others)
            )
            updates.append(
                RankingUpdate(
                    bot_id=stat.bot.id,
                    old_rating=stat.bot.rating,
                    new_rating=new_rating,
                    rank=rank_for_rating(new_rating),
                    won=stat.won,
                    lost=stat.lost,
                )
            )
        return updates

    def apply_rankings(self, snapshot: PublishSnapshot) -> None:
        """Persist the snapshot's ranking updates and advance the watermarks."""
        if not snapshot.rankings:
            return
        with self.cycle_lock:
            self.store.update_rankings(snapshot.rankings, snapshot.taken_at, snapshot.sequence)
        for update in snapshot.rankings:
            logger.debug(
                f"Bot {update.bot_id}: {update.old_rating} -> {update.new_rating} "
                f"({update.rank.code}, {update.won}W/{update.lost}L)"
            )
