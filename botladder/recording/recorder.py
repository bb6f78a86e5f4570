"""
Result Recorder

Durably stores executed games. Persistence faults are retried a few times
before they are surfaced to the worker.
"""

import logging
import time
from typing import Callable

from ..core.errors import PersistenceError
from ..core.models import GameEvent, GameResult
from ..storage.base import LadderStore

logger = logging.getLogger(__name__)


class ResultRecorder:
    """Writes a game result and its events in one atomic store call."""

    def __init__(
        self,
        store: LadderStore,
        retries: int = 3,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the recorder.

        Args:
            store: Storage port to write to
            retries: Attempts after the first failed one
            retry_delay: Seconds to wait between attempts
            sleep: Sleep function (injected in tests)
        """
        self.store = store
        self.retries = retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    def record(self, result: GameResult, events: list[GameEvent]) -> None:
        """
        Persist a result with its events, both or neither.

        Raises:
            PersistenceError: All attempts failed.
        """
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.store.save(result, events)
                if attempt > 1:
                    logger.info(f"Recorded game {result.id} on attempt {attempt}")
                return
            except PersistenceError as e:
                if attempt == attempts:
                    raise PersistenceError(
                        f"Could not record game {result.id} after {attempts} attempts: {e}",
                        attempts=attempts,
                    ) from e
                logger.warning(
                    f"Recording game {result.id} failed (attempt {attempt}/{attempts}): {e}"
                )
                self._sleep(self.retry_delay)
