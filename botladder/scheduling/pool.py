"""
Worker Pool

Runs a fixed number of ladder workers in parallel threads with a shared stop
token and escalates worker deaths to a supervisor hook.
"""

import logging
import sys
import threading
import time
from typing import Callable

from tqdm import tqdm

from ..core.errors import WorkerDiedError
from ..core.models import GameResult
from ..execution.executor import GameExecutor
from ..matchmaking.matchmaker import Matchmaker
from ..recording.recorder import ResultRecorder
from .worker import LadderWorker, WorkerState

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Manages the ladder's worker threads.

    Workers coordinate only through the matchmaker and the store. When a
    worker dies the pool records the fault, calls `on_worker_died` and, by
    default, stops the remaining workers so the fault is not hidden behind a
    shrinking pool.
    """

    def __init__(
        self,
        matchmaker: Matchmaker,
        executor: GameExecutor,
        recorder: ResultRecorder,
        worker_count: int = 2,
        backoff_seconds: float = 1.0,
        on_worker_died: Callable[[str, BaseException], None] | None = None,
        stop_on_failure: bool = True,
    ):
        """
        Initialize the pool.

        Args:
            matchmaker: Shared matchmaker
            executor: Shared game executor
            recorder: Shared result recorder
            worker_count: Number of concurrent workers
            backoff_seconds: WAITING sleep when no matchup is eligible
            on_worker_died: Supervisor hook, called with the worker name and
                the fatal exception
            stop_on_failure: Stop all workers when one dies
        """
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self.matchmaker = matchmaker
        self.executor = executor
        self.recorder = recorder
        self.worker_count = worker_count
        self.backoff_seconds = backoff_seconds
        self.on_worker_died = on_worker_died
        self.stop_on_failure = stop_on_failure

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._workers: list[LadderWorker] = []
        self._threads: list[threading.Thread] = []
        self.failures: list[tuple[str, BaseException]] = []

        # Bounded runs
        self._target: int | None = None
        self._recorded_in_run = 0
        self._pbar: tqdm | None = None

    @property
    def workers(self) -> list[LadderWorker]:
        return list(self._workers)

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    @property
    def games_recorded(self) -> int:
        return sum(w.games_recorded for w in self._workers)

    @property
    def execution_faults(self) -> int:
        return sum(w.execution_faults for w in self._workers)

    @property
    def starvation_waits(self) -> int:
        return sum(w.starvation_waits for w in self._workers)

    def states(self) -> dict[str, WorkerState]:
        return {w.name: w.state for w in self._workers}

    def start(self) -> None:
        """Start all workers."""
        if self.is_running:
            raise RuntimeError("Worker pool is already running")

        self._stop_event.clear()
        self.failures = []
        self._workers = [
            LadderWorker(
                name=f"ladder-worker-{i}",
                matchmaker=self.matchmaker,
                executor=self.executor,
                recorder=self.recorder,
                stop_event=self._stop_event,
                backoff_seconds=self.backoff_seconds,
                on_recorded=self._handle_recorded,
                on_died=self._handle_died,
            )
            for i in range(self.worker_count)
        ]
        self._threads = [
            threading.Thread(target=worker.run, name=worker.name)
            for worker in self._workers
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Started {self.worker_count} ladder workers")

    def stop(self) -> None:
        """
        Signal all workers to stop.

        Waiting and fetching workers stop promptly; workers in the middle of
        a game finish and record it first.
        """
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        """
        Wait for all workers to finish.

        Raises:
            WorkerDiedError: A worker terminated on a fatal fault.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)

        if self.failures:
            name, cause = self.failures[0]
            raise WorkerDiedError(name, cause) from cause

    def run_games(
        self,
        num_games: int,
        show_progress: bool = True,
        timeout: float | None = None,
    ) -> int:
        """
        Run the pool until `num_games` games were recorded.

        Games already in progress when the target is reached are still
        recorded, so slightly more games than requested may be stored.

        Args:
            num_games: Number of games to record
            show_progress: Whether to show a progress bar
            timeout: Give up after this many seconds

        Returns:
            Number of games recorded during the run.
        """
        with self._lock:
            self._target = num_games
            self._recorded_in_run = 0
        self._pbar = (
            tqdm(total=num_games, desc="Games", unit="game", file=sys.stderr)
            if show_progress
            else None
        )

        self.start()
        try:
            deadline = None if timeout is None else time.monotonic() + timeout
            for thread in self._threads:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(remaining)
            if self.is_running:
                logger.warning(f"Stopping after {timeout}s with {self._recorded_in_run} games")
        finally:
            self.stop()
            if self._pbar is not None:
                self._pbar.close()
                self._pbar = None

        self.join()
        with self._lock:
            self._target = None
            return self._recorded_in_run

    def _handle_recorded(self, result: GameResult) -> None:
        with self._lock:
            self._recorded_in_run += 1
            if self._pbar is not None:
                self._pbar.update(1)
            if self._target is not None and self._recorded_in_run >= self._target:
                self._stop_event.set()

    def _handle_died(self, worker_name: str, exc: BaseException) -> None:
        with self._lock:
            self.failures.append((worker_name, exc))
        if self.on_worker_died is not None:
            self.on_worker_died(worker_name, exc)
        if self.stop_on_failure:
            logger.error(f"{worker_name} died, stopping the pool")
            self._stop_event.set()
