"""
Ladder Worker

One worker of the pool: fetch a matchup, play it, record it, repeat.
"""

import logging
import threading
from enum import Enum
from typing import Callable

from ..core.errors import GameExecutionError, NoEligibleMatchupError
from ..core.models import GameResult
from ..execution.executor import GameExecutor
from ..matchmaking.matchmaker import Matchmaker
from ..recording.recorder import ResultRecorder

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    FETCHING = "fetching"
    EXECUTING = "executing"
    RECORDING = "recording"
    WAITING = "waiting"
    TERMINATED = "terminated"


class LadderWorker:
    """
    Worker state machine.

    FETCHING asks the matchmaker for a matchup. Starvation moves to WAITING,
    which sleeps the backoff interval on the stop event and fetches again.
    EXECUTING plays the game; an execution fault abandons it and the worker
    carries on. RECORDING stores the outcome. Bots are released after every
    game, recorded or not. Any other exception terminates the worker and is
    reported through `on_died`.

    The stop event is checked before each fetch, so a worker that is
    executing or recording finishes its current game first.
    """

    def __init__(
        self,
        name: str,
        matchmaker: Matchmaker,
        executor: GameExecutor,
        recorder: ResultRecorder,
        stop_event: threading.Event,
        backoff_seconds: float = 1.0,
        on_recorded: Callable[[GameResult], None] | None = None,
        on_died: Callable[[str, BaseException], None] | None = None,
    ):
        self.name = name
        self.matchmaker = matchmaker
        self.executor = executor
        self.recorder = recorder
        self.stop_event = stop_event
        self.backoff_seconds = backoff_seconds
        self.on_recorded = on_recorded
        self.on_died = on_died

        self.state = WorkerState.FETCHING
        self.failure: BaseException | None = None

        # Only ever written by this worker's own thread
        self.games_recorded = 0
        self.execution_faults = 0
        self.starvation_waits = 0

    def run(self) -> None:
        """Run until the stop event is set or a fatal fault occurs."""
        logger.debug(f"{self.name} started")
        try:
            while not self.stop_event.is_set():
                self._step()
        except Exception as e:
            self.state = WorkerState.TERMINATED
            self.failure = e
            logger.exception(f"{self.name} terminated by unexpected fault")
            if self.on_died is not None:
                self.on_died(self.name, e)
            return

        self.state = WorkerState.TERMINATED
        logger.debug(f"{self.name} stopped")

    def _step(self) -> None:
        self.state = WorkerState.FETCHING
        try:
            matchup = self.matchmaker.next_matchup()
        except NoEligibleMatchupError as e:
            self.state = WorkerState.WAITING
            self.starvation_waits += 1
            logger.debug(f"{self.name} waiting {self.backoff_seconds}s: {e}")
            self.stop_event.wait(self.backoff_seconds)
            return

        try:
            self.state = WorkerState.EXECUTING
            try:
                game = self.executor.execute(matchup)
            except GameExecutionError as e:
                self.execution_faults += 1
                logger.warning(
                    f"{self.name} abandoned {matchup.bot_a.name} vs {matchup.bot_b.name}: {e}"
                )
                return

            self.state = WorkerState.RECORDING
            self.recorder.record(game.result, game.events)
            self.games_recorded += 1
        finally:
            self.matchmaker.release(matchup)

        if self.on_recorded is not None:
            self.on_recorded(game.result)
