"""
Game Engines

Backends that actually run a game between two bots. The executor only sees
the raw outcome an engine reports; timing, timeout rules and hashing are
applied on top of it.
"""

import json
import logging
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

import numpy as np

from ..core.errors import GameExecutionError
from ..core.models import EventTrace, Matchup, Race
from ..core.units import UnitEventType, UnitType

logger = logging.getLogger(__name__)

Side = Literal["A", "B"]


@dataclass(frozen=True)
class GameLimits:
    """Budgets a single game may use."""

    realtime_seconds: float = 3600.0
    frame_limit: int = 86400


@dataclass
class EngineOutcome:
    """Raw outcome of one game as reported by an engine."""

    winner: Side | None
    bot_a_crashed: bool = False
    bot_b_crashed: bool = False
    frame_count: int | None = None
    realtime_timeout: bool = False  # Engine-side detection, if any
    frame_timeout: bool = False
    trace: EventTrace = field(default_factory=EventTrace)
    record: bytes = b""  # Raw game record (replay) used for the content hash
    partial: bool = False  # The game was interrupted mid-way


@runtime_checkable
class GameEngine(Protocol):
    """Protocol for game engine backends."""

    def play(self, matchup: Matchup, limits: GameLimits) -> EngineOutcome:
        """
        Play one game.

        Raises:
            GameExecutionError: The game could not be started at all.
        """
        ...


# Units a random game produces for each race: (worker, army, building)
_RACE_UNITS: dict[Race, tuple[UnitType, UnitType, UnitType]] = {
    Race.PROTOSS: (UnitType.PROTOSS_PROBE, UnitType.PROTOSS_ZEALOT, UnitType.PROTOSS_PYLON),
    Race.TERRAN: (UnitType.TERRAN_SCV, UnitType.TERRAN_MARINE, UnitType.TERRAN_SUPPLY_DEPOT),
    Race.ZERG: (UnitType.ZERG_DRONE, UnitType.ZERG_ZERGLING, UnitType.ZERG_OVERLORD),
}


class RandomEngine:
    """
    A random engine for testing and dry runs.

    The stronger bot by rating wins more often; crashes and unit events are
    sprinkled in so the whole pipeline has something to publish.
    """

    def __init__(self, seed: int | None = None, crash_rate: float = 0.02):
        self._rng = np.random.default_rng(seed)
        self.crash_rate = crash_rate

    def play(self, matchup: Matchup, limits: GameLimits) -> EngineOutcome:
        rating_gap = matchup.bot_b.rating - matchup.bot_a.rating
        p_a_wins = 1 / (1 + 10 ** (rating_gap / 400))
        winner: Side = "A" if self._rng.random() < p_a_wins else "B"

        frame_count = int(self._rng.integers(2000, 40000))
        trace = EventTrace()
        for race in (matchup.race_a, matchup.race_b):
            worker, army, building = _RACE_UNITS.get(race, _RACE_UNITS[Race.TERRAN])
            trace.add(worker, UnitEventType.UNIT_CREATE, int(self._rng.integers(4, 30)))
            trace.add(building, UnitEventType.UNIT_CREATE, int(self._rng.integers(1, 12)))
            trace.add(army, UnitEventType.UNIT_CREATE, int(self._rng.integers(0, 40)))
            trace.add(army, UnitEventType.UNIT_DESTROY, int(self._rng.integers(0, 20)))

        return EngineOutcome(
            winner=winner,
            bot_a_crashed=bool(self._rng.random() < self.crash_rate),
            bot_b_crashed=bool(self._rng.random() < self.crash_rate),
            frame_count=frame_count,
            trace=trace,
            record=self._rng.bytes(64),
        )


class CommandEngine:
    """
    Runs games through an external sandbox command.

    The command line is a template; `{bot_a}`, `{bot_a_path}`, `{race_a}`,
    `{bot_b}`, `{bot_b_path}`, `{race_b}`, `{map}`, `{frame_limit}` and
    `{outcome}` are substituted per game. The command must write a JSON
    outcome file to `{outcome}`:

        {
            "winner": "A" | "B" | null,
            "crashed": {"A": false, "B": false},
            "frameCount": 12345,
            "frameTimeout": false,
            "events": [{"unit": 72, "event": "UNIT_CREATE", "count": 10}],
            "replay": "path/to/replay"
        }
    """

    def __init__(self, command: list[str], work_dir: str | Path = "games"):
        """
        Initialize the command engine.

        Args:
            command: Command line template
            work_dir: Directory the command runs in
        """
        if not command:
            raise ValueError("CommandEngine needs a command line")
        self.command = list(command)
        self.work_dir = Path(work_dir)

    def _render(self, matchup: Matchup, limits: GameLimits, outcome_path: Path) -> list[str]:
        values = {
            "bot_a": matchup.bot_a.name,
            "bot_a_path": matchup.bot_a.binary_path,
            "race_a": matchup.race_a.value,
            "bot_b": matchup.bot_b.name,
            "bot_b_path": matchup.bot_b.binary_path,
            "race_b": matchup.race_b.value,
            "map": matchup.map_name,
            "frame_limit": str(limits.frame_limit),
            "outcome": str(outcome_path),
        }
        return [arg.format(**values) for arg in self.command]

    def play(self, matchup: Matchup, limits: GameLimits) -> EngineOutcome:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.work_dir) as tmp:
            outcome_path = Path(tmp) / "outcome.json"
            args = self._render(matchup, limits, outcome_path)

            try:
                result = subprocess.run(
                    args,
                    capture_output=True,
                    text=True,
                    cwd=self.work_dir,
                    timeout=limits.realtime_seconds,
                )
            except FileNotFoundError as e:
                raise GameExecutionError(f"Game command not found: {args[0]}") from e
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"{matchup.bot_a.name} vs {matchup.bot_b.name} exceeded "
                    f"{limits.realtime_seconds}s, killed"
                )
                outcome = self._read_outcome(outcome_path) if outcome_path.exists() else None
                outcome = outcome or EngineOutcome(winner=None)
                outcome.realtime_timeout = True
                outcome.partial = True
                return outcome

            if not outcome_path.exists():
                raise GameExecutionError(
                    f"Game command exited with {result.returncode} without an outcome: "
                    f"{result.stderr.strip()[-500:]}"
                )

            outcome = self._read_outcome(outcome_path)
            if result.returncode != 0:
                logger.warning(
                    f"Game command exited with {result.returncode}, keeping partial outcome"
                )
                outcome.partial = True
            return outcome

    def _read_outcome(self, path: Path) -> EngineOutcome:
        """
        Parse and check an outcome file written by the sandbox.

        Raises:
            GameExecutionError: The file is unreadable or malformed.
        """
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise GameExecutionError(f"Unreadable game outcome {path}: {e}") from e
        if not isinstance(data, dict):
            raise GameExecutionError(f"Game outcome must be a JSON object, got {data!r}")

        winner = data.get("winner")
        if winner not in ("A", "B", None):
            raise GameExecutionError(f"Invalid winner in game outcome: {winner!r}")

        crashed = data.get("crashed", {})
        if not isinstance(crashed, dict):
            raise GameExecutionError(f"Invalid crashed flags in game outcome: {crashed!r}")

        frame_count = data.get("frameCount")
        if frame_count is not None:
            frame_count = _count(frame_count, "frameCount")

        events = data.get("events", [])
        if not isinstance(events, list):
            raise GameExecutionError(f"Invalid events in game outcome: {events!r}")
        trace = EventTrace()
        for entry in events:
            if not isinstance(entry, dict):
                raise GameExecutionError(f"Invalid unit event in game outcome: {entry!r}")
            try:
                event = UnitEventType.parse(entry["event"])
            except (KeyError, ValueError, TypeError):
                logger.warning(f"Skipping unknown unit event {entry!r}")
                continue
            unit = entry.get("unit", UnitType.UNKNOWN)
            if not isinstance(unit, (int, str)) or isinstance(unit, bool):
                raise GameExecutionError(f"Invalid unit in game outcome: {entry!r}")
            trace.add(UnitType.parse(unit), event, _count(entry.get("count", 1), "count"))

        record = b""
        replay = data.get("replay")
        if replay is not None and not isinstance(replay, str):
            raise GameExecutionError(f"Invalid replay path in game outcome: {replay!r}")
        if replay:
            replay_path = Path(replay)
            if not replay_path.is_absolute():
                replay_path = self.work_dir / replay_path
            if replay_path.exists():
                record = replay_path.read_bytes()

        return EngineOutcome(
            winner=winner,
            bot_a_crashed=_flag(crashed, "A"),
            bot_b_crashed=_flag(crashed, "B"),
            frame_count=frame_count,
            frame_timeout=_flag(data, "frameTimeout"),
            trace=trace,
            record=record,
        )


def _count(value, name: str) -> int:
    """A non-negative integer from an outcome file."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise GameExecutionError(f"Invalid {name} in game outcome: {value!r}")
    return value


def _flag(data: dict, key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise GameExecutionError(f"Invalid {key} flag in game outcome: {value!r}")
    return value
