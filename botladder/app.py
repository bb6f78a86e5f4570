"""
Ladder Application

Composition root: builds the matchmaker, executor, recorder, worker pool,
aggregator and publishers from a LadderConfig and wires them together.
"""

import logging
import threading
from datetime import timedelta
from typing import Callable

from .config import EngineConfig, LadderConfig
from .core.errors import ConfigError, LadderError, PersistenceError, PublishError
from .core.models import Bot, Race
from .execution import CommandEngine, GameEngine, GameExecutor, GameLimits, RandomEngine
from .matchmaking import Matchmaker
from .publish import BotStatsPublisher, DirectorySink, GameResultsPublisher, Publisher
from .recording import ResultRecorder
from .scheduling import WorkerPool
from .stats import EloRating, PublishSnapshot, StatsAggregator
from .storage import LadderStore, SqlStore

logger = logging.getLogger(__name__)

PUBLISHER_THREAD = "ladder-publisher"


def build_engine(config: EngineConfig, seed: int | None = None) -> GameEngine:
    """Create the game engine named in the configuration."""
    if config.type == "random":
        return RandomEngine(seed=seed)
    if config.type == "command":
        if not config.command:
            raise ConfigError("engine.command is required for the command engine")
        return CommandEngine(config.command, work_dir=config.work_dir)
    raise ConfigError(f"Unknown engine type: {config.type}")


class Ladder:
    """
    A running ladder.

    Game traffic runs on the worker pool; publish cycles are triggered with
    `prepare_publish()`, or on a timer with `publish_periodically()`.
    """

    def __init__(
        self,
        config: LadderConfig,
        store: LadderStore,
        engine: GameEngine,
        sink: Publisher,
        on_worker_died: Callable[[str, BaseException], None] | None = None,
    ):
        self.config = config
        self.store = store
        self.sink = sink
        self._on_worker_died = on_worker_died

        self.matchmaker = Matchmaker(store, config.maps, seed=config.seed)
        self.executor = GameExecutor(
            engine,
            GameLimits(
                realtime_seconds=config.realtime_limit_seconds,
                frame_limit=config.frame_limit,
            ),
            store=store,
        )
        self.recorder = ResultRecorder(
            store,
            retries=config.persistence_retries,
            retry_delay=config.persistence_retry_delay,
        )
        self.pool = WorkerPool(
            self.matchmaker,
            self.executor,
            self.recorder,
            worker_count=config.get_workers(),
            backoff_seconds=config.backoff_seconds,
            on_worker_died=self._worker_died,
        )
        self.aggregator = StatsAggregator(
            store,
            rating=EloRating(
                k_factor=config.rating.k_factor,
                initial_rating=config.rating.initial_rating,
            ),
            event_threshold=config.event_threshold,
            window=(
                timedelta(days=config.publish_window_days)
                if config.publish_window_days is not None
                else None
            ),
        )
        self.publishers = [GameResultsPublisher(), BotStatsPublisher()]

        self._publish_stop = threading.Event()
        self._publish_thread: threading.Thread | None = None

    @classmethod
    def from_config(
        cls,
        config: LadderConfig,
        store: LadderStore | None = None,
        engine: GameEngine | None = None,
        sink: Publisher | None = None,
        on_worker_died: Callable[[str, BaseException], None] | None = None,
    ) -> "Ladder":
        """Build a ladder, filling in components the config describes."""
        return cls(
            config,
            store=store if store is not None else SqlStore(config.database_url),
            engine=engine if engine is not None else build_engine(config.engine, config.seed),
            sink=sink if sink is not None else DirectorySink(config.publish_dir),
            on_worker_died=on_worker_died,
        )

    # Bots

    def register_bot(
        self,
        name: str,
        race: Race | str,
        binary_path: str,
        parent: str | None = None,
    ) -> Bot:
        """Register a bot, optionally as a new version of `parent`."""
        parent_id = None
        if parent is not None:
            parent_bot = self.store.find_bot(parent)
            if parent_bot is None:
                raise LadderError(f"Unknown parent bot: {parent}")
            parent_id = parent_bot.id
        bot = self.store.add_bot(
            Bot(
                id=None,
                enabled=True,
                parent_id=parent_id,
                name=name,
                race=Race.parse(race),
                binary_path=binary_path,
                rating=self.config.rating.initial_rating,
            )
        )
        logger.info(f"Registered {bot.name} ({bot.race.value}) as bot {bot.id}")
        return bot

    def set_enabled(self, name: str, enabled: bool) -> Bot:
        bot = self.store.find_bot(name)
        if bot is None:
            raise LadderError(f"Unknown bot: {name}")
        self.store.set_enabled(bot.id, enabled)
        logger.info(f"{'Enabled' if enabled else 'Disabled'} {name}")
        return self.store.get_bot(bot.id)

    # Game traffic

    def start(self) -> None:
        self.pool.start()

    def stop(self) -> None:
        """Stop game traffic and periodic publishing."""
        self.pool.stop()
        self._publish_stop.set()

    def join(self, timeout: float | None = None) -> None:
        self.pool.join(timeout)
        if self._publish_thread is not None:
            self._publish_thread.join(timeout)

    def run_games(self, num_games: int, show_progress: bool = True) -> int:
        return self.pool.run_games(num_games, show_progress=show_progress)

    def _worker_died(self, worker_name: str, exc: BaseException) -> None:
        logger.error(f"{worker_name} failed: {exc!r}")
        if self._on_worker_died is not None:
            self._on_worker_died(worker_name, exc)

    # Publishing

    def prepare_publish(self) -> PublishSnapshot:
        """
        Run one publish cycle: aggregate, publish every stream, then persist
        the new rankings.

        A failed publish leaves rankings untouched, so the same games are
        counted again by the next cycle.

        Raises:
            PublishError: A sink write failed.
        """
        with self.aggregator.cycle_lock:
            snapshot = self.aggregator.aggregate()
            for publisher in self.publishers:
                publisher.publish(snapshot, self.sink)
            self.aggregator.apply_rankings(snapshot)
        return snapshot

    def publish_periodically(self, interval: float) -> threading.Thread:
        """Run publish cycles every `interval` seconds until `stop()`."""
        if self._publish_thread is not None and self._publish_thread.is_alive():
            raise RuntimeError("Periodic publishing is already running")

        def loop():
            while not self._publish_stop.wait(interval):
                try:
                    self.prepare_publish()
                except (PublishError, PersistenceError):
                    logger.exception("Publish cycle failed, retrying next interval")
                except Exception as e:
                    logger.exception("Publish cycle hit an unexpected fault")
                    self._worker_died(PUBLISHER_THREAD, e)

        self._publish_stop.clear()
        self._publish_thread = threading.Thread(target=loop, name=PUBLISHER_THREAD, daemon=True)
        self._publish_thread.start()
        return self._publish_thread
