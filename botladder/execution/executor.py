"""
Game Executor

Runs a matchup through a game engine and turns the raw engine outcome into an
immutable GameResult plus its unit events.
"""

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..core.errors import BotDisabledError, GameExecutionError
from ..core.models import GameEvent, GameResult, Matchup
from ..storage.base import LadderStore
from .engine import EngineOutcome, GameEngine, GameLimits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutedGame:
    """A finished game, ready to be recorded."""

    result: GameResult
    events: list[GameEvent]
    partial: bool = False


def compute_game_hash(matchup: Matchup, outcome: EngineOutcome) -> str:
    """
    SHA-256 of the game record.

    Falls back to a canonical description of the outcome when the engine
    produced no raw record.
    """
    sha256 = hashlib.sha256()
    if outcome.record:
        sha256.update(outcome.record)
    else:
        description = {
            "botA": matchup.bot_a.name,
            "raceA": matchup.race_a.value,
            "botB": matchup.bot_b.name,
            "raceB": matchup.race_b.value,
            "map": matchup.map_name,
            "winner": outcome.winner,
            "crashed": [outcome.bot_a_crashed, outcome.bot_b_crashed],
            "frameCount": outcome.frame_count,
            "events": [[int(u), int(e)] for u, e in outcome.trace.events],
        }
        sha256.update(json.dumps(description, sort_keys=True).encode())
    return sha256.hexdigest()


class GameExecutor:
    """
    Plays matchups and applies the ladder's timeout rules.

    Either timeout voids the outcome: the result is stored without a winner
    or loser even if the engine reported one. Crash flags are kept as
    reported.
    """

    def __init__(
        self,
        engine: GameEngine,
        limits: GameLimits | None = None,
        store: LadderStore | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the executor.

        Args:
            engine: Backend that plays the game
            limits: Realtime and frame budgets
            store: If given, both bots are re-checked for being enabled
                right before the game starts
            clock: Monotonic clock for measuring game duration
            now: Wall clock for result timestamps
        """
        self.engine = engine
        self.limits = limits or GameLimits()
        self.store = store
        self._clock = clock
        self._now = now

    def execute(self, matchup: Matchup) -> ExecutedGame:
        """
        Play one game.

        Raises:
            GameExecutionError: The game could not be run at all. No result
                exists in that case.
        """
        self._check_enabled(matchup)

        start = self._clock()
        try:
            outcome = self.engine.play(matchup, self.limits)
        except OSError as e:
            raise GameExecutionError(f"Engine failed to start game: {e}") from e
        duration = self._clock() - start

        realtime_timeout = outcome.realtime_timeout or duration > self.limits.realtime_seconds
        frame_timeout = outcome.frame_timeout or (
            outcome.frame_count is not None and outcome.frame_count > self.limits.frame_limit
        )

        winner = loser = None
        if realtime_timeout or frame_timeout:
            if outcome.winner is not None:
                logger.info(
                    f"Voiding reported winner of {matchup.bot_a.name} vs "
                    f"{matchup.bot_b.name}: game timed out"
                )
        elif outcome.winner == "A":
            winner, loser = matchup.bot_a, matchup.bot_b
        elif outcome.winner == "B":
            winner, loser = matchup.bot_b, matchup.bot_a

        game_id = uuid.uuid4().hex
        result = GameResult(
            id=game_id,
            time=self._now(),
            game_realtime=duration,
            realtime_timeout=realtime_timeout,
            frame_timeout=frame_timeout,
            map=matchup.map_name,
            bot_a=matchup.bot_a,
            race_a=matchup.race_a,
            bot_b=matchup.bot_b,
            race_b=matchup.race_b,
            winner=winner,
            loser=loser,
            bot_a_crashed=outcome.bot_a_crashed,
            bot_b_crashed=outcome.bot_b_crashed,
            game_hash=compute_game_hash(matchup, outcome),
            frame_count=outcome.frame_count,
        )

        logger.debug(
            f"Game {game_id} on {matchup.map_name}: "
            f"winner={winner.name if winner else None} "
            f"frames={outcome.frame_count} time={duration:.1f}s"
        )
        return ExecutedGame(
            result=result,
            events=outcome.trace.to_game_events(game_id),
            partial=outcome.partial,
        )

    def _check_enabled(self, matchup: Matchup) -> None:
        if self.store is None:
            return
        for bot in (matchup.bot_a, matchup.bot_b):
            current = self.store.get_bot(bot.id)
            if current is None or not current.enabled:
                raise BotDisabledError(bot.name)
