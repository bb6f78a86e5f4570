"""
Matchmaker

Picks the next pair of bots to play and guarantees no bot is booked into
two games at once.
"""

import logging
import threading
from datetime import datetime, timezone

import numpy as np

from ..core.errors import NoEligibleMatchupError
from ..core.models import PLAYABLE_RACES, Bot, Matchup, Race
from ..storage.base import LadderStore

logger = logging.getLogger(__name__)

# Sort key for bots that have never played
_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class Matchmaker:
    """
    Selects matchups among enabled bots that are not already in a game.

    Selection and reservation happen under one lock, and the reservation
    itself is an all-or-nothing store operation, so concurrent callers never
    receive overlapping matchups. The bot that has waited longest since its
    last game plays next; its opponent is drawn uniformly from the rest.
    """

    def __init__(
        self,
        store: LadderStore,
        maps: list[str],
        seed: int | None = None,
        max_reservation_attempts: int = 3,
    ):
        """
        Initialize the matchmaker.

        Args:
            store: Storage port holding bots and in-flight reservations
            maps: Map pool to draw from
            seed: Random seed for reproducibility
            max_reservation_attempts: How often to retry when another
                process reserved a chosen bot first
        """
        if not maps:
            raise ValueError("Matchmaker needs at least one map")
        self.store = store
        self.maps = list(maps)
        self.max_reservation_attempts = max_reservation_attempts
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def eligible_bots(self) -> list[Bot]:
        """Enabled bots that are not currently in flight."""
        busy = self.store.in_flight()
        return [bot for bot in self.store.list_enabled_bots() if bot.id not in busy]

    def next_matchup(self) -> Matchup:
        """
        Select and reserve the next matchup.

        Returns:
            Matchup with both bots marked in flight.

        Raises:
            NoEligibleMatchupError: Fewer than two bots are available.
        """
        with self._lock:
            for _ in range(self.max_reservation_attempts):
                candidates = self.eligible_bots()
                if len(candidates) < 2:
                    raise NoEligibleMatchupError(
                        f"Only {len(candidates)} bot(s) available for a game"
                    )

                bot_a, bot_b = self._pick_pair(candidates)
                if self.store.mark_in_flight([bot_a.id, bot_b.id]):
                    matchup = Matchup(
                        bot_a=bot_a,
                        race_a=self._resolve_race(bot_a.race),
                        bot_b=bot_b,
                        race_b=self._resolve_race(bot_b.race),
                        map_name=self.maps[int(self._rng.integers(len(self.maps)))],
                    )
                    logger.debug(
                        f"Matchup {bot_a.name} ({matchup.race_a.code}) vs "
                        f"{bot_b.name} ({matchup.race_b.code}) on {matchup.map_name}"
                    )
                    return matchup

                logger.debug(f"Lost reservation race for {bot_a.name}/{bot_b.name}, retrying")

            raise NoEligibleMatchupError("Could not reserve a matchup, bots are contended")

    def release(self, matchup: Matchup) -> None:
        """Clear the in-flight markers of both bots of a matchup."""
        self.store.clear_in_flight(matchup.bot_ids)

    def _pick_pair(self, candidates: list[Bot]) -> tuple[Bot, Bot]:
        def waited(bot: Bot) -> datetime:
            return bot.last_played or _NEVER

        oldest = min(waited(bot) for bot in candidates)
        longest_waiting = [bot for bot in candidates if waited(bot) == oldest]
        bot_a = longest_waiting[int(self._rng.integers(len(longest_waiting)))]

        opponents = [bot for bot in candidates if bot.id != bot_a.id]
        bot_b = opponents[int(self._rng.integers(len(opponents)))]

        # Either side may start as player A
        if self._rng.random() < 0.5:
            bot_a, bot_b = bot_b, bot_a
        return bot_a, bot_b

    def _resolve_race(self, race: Race) -> Race:
        """Fixed races play as configured; RANDOM is resolved per game."""
        if race in PLAYABLE_RACES:
            return race
        return PLAYABLE_RACES[int(self._rng.integers(len(PLAYABLE_RACES)))]
