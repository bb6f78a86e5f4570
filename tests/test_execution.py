"""
Tests for Game Execution

Tests cover timeout detection, winner voiding, crash flags, hashing, the
disabled-bot check and the random and command engines.
"""

import hashlib
import json
import subprocess
from dataclasses import replace
from unittest.mock import patch

import pytest

from botladder.core import (
    BotDisabledError,
    EventTrace,
    GameExecutionError,
    Matchup,
    Race,
    UnitEventType,
    UnitType,
)
from botladder.execution import (
    CommandEngine,
    EngineOutcome,
    GameEngine,
    GameExecutor,
    GameLimits,
    RandomEngine,
    compute_game_hash,
)
from botladder.storage import MemoryStore
from helpers import new_bot


class ScriptedEngine:
    """Engine returning a fixed outcome."""

    def __init__(self, outcome=None, error=None):
        self.outcome = outcome or EngineOutcome(winner="A", frame_count=1000)
        self.error = error
        self.calls = 0

    def play(self, matchup, limits):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.outcome


class FakeClock:
    """Monotonic clock that advances by `step` seconds per call."""

    def __init__(self, step):
        self.step = step
        self.now = 0.0

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def make_matchup(store=None):
    a = new_bot("a", Race.PROTOSS)
    b = new_bot("b", Race.ZERG)
    if store is not None:
        a, b = store.add_bot(a), store.add_bot(b)
    else:
        a, b = replace(a, id=1), replace(b, id=2)
    return Matchup(bot_a=a, race_a=Race.PROTOSS, bot_b=b, race_b=Race.ZERG, map_name="Python")


class TestGameExecutor:
    """Tests for GameExecutor."""

    def test_winner_mapping(self):
        """The reported side becomes winner, the other side loser."""
        matchup = make_matchup()
        for side, winner, loser in (("A", "a", "b"), ("B", "b", "a")):
            executor = GameExecutor(ScriptedEngine(EngineOutcome(winner=side, frame_count=10)))
            result = executor.execute(matchup).result
            assert result.winner.name == winner
            assert result.loser.name == loser
            assert not result.invalid

    def test_no_winner_reported(self):
        """An engine-reported draw has neither winner nor loser."""
        executor = GameExecutor(ScriptedEngine(EngineOutcome(winner=None)))
        result = executor.execute(make_matchup()).result
        assert result.winner is None
        assert result.loser is None

    def test_realtime_timeout_voids_winner(self):
        """Exceeding the wall-clock budget voids the reported winner."""
        executor = GameExecutor(
            ScriptedEngine(EngineOutcome(winner="A", frame_count=10)),
            GameLimits(realtime_seconds=60, frame_limit=1000),
            clock=FakeClock(step=61),
        )
        result = executor.execute(make_matchup()).result

        assert result.realtime_timeout
        assert not result.frame_timeout
        assert result.invalid
        assert result.winner is None and result.loser is None
        assert result.game_realtime == 61

    def test_frame_timeout_voids_winner(self):
        """Exceeding the frame budget voids the reported winner."""
        executor = GameExecutor(
            ScriptedEngine(EngineOutcome(winner="B", frame_count=1001)),
            GameLimits(realtime_seconds=60, frame_limit=1000),
            clock=FakeClock(step=1),
        )
        result = executor.execute(make_matchup()).result

        assert result.frame_timeout
        assert not result.realtime_timeout
        assert result.winner is None

    def test_engine_reported_timeout(self):
        """A timeout detected by the engine is kept."""
        executor = GameExecutor(
            ScriptedEngine(EngineOutcome(winner="A", realtime_timeout=True, partial=True)),
            clock=FakeClock(step=1),
        )
        executed = executor.execute(make_matchup())

        assert executed.result.realtime_timeout
        assert executed.result.winner is None
        assert executed.partial

    def test_within_limits(self):
        """Games within both budgets are valid."""
        executor = GameExecutor(
            ScriptedEngine(EngineOutcome(winner="A", frame_count=1000)),
            GameLimits(realtime_seconds=60, frame_limit=1000),
            clock=FakeClock(step=60),
        )
        result = executor.execute(make_matchup()).result
        assert not result.realtime_timeout
        assert not result.frame_timeout

    def test_crash_flags_independent(self):
        """Crash flags are kept as reported, even for the winner."""
        executor = GameExecutor(
            ScriptedEngine(EngineOutcome(winner="A", bot_a_crashed=True, bot_b_crashed=False))
        )
        result = executor.execute(make_matchup()).result
        assert result.bot_a_crashed
        assert not result.bot_b_crashed
        assert result.winner.name == "a"

    def test_events_in_executor_order(self):
        """Events are collapsed in the order the engine produced them."""
        trace = EventTrace()
        trace.add(UnitType.PROTOSS_CARRIER, UnitEventType.UNIT_CREATE, 10)
        trace.add(UnitType.ZERG_ZERGLING, UnitEventType.UNIT_DESTROY, 3)
        executor = GameExecutor(ScriptedEngine(EngineOutcome(winner="A", trace=trace)))

        executed = executor.execute(make_matchup())

        assert [(e.unit, e.event, e.amount) for e in executed.events] == [
            (UnitType.PROTOSS_CARRIER, UnitEventType.UNIT_CREATE, 10),
            (UnitType.ZERG_ZERGLING, UnitEventType.UNIT_DESTROY, 3),
        ]
        assert all(e.game_id == executed.result.id for e in executed.events)

    def test_game_hash_of_record(self):
        """The game hash is the SHA-256 of the game record."""
        outcome = EngineOutcome(winner="A", record=b"replay bytes")
        executor = GameExecutor(ScriptedEngine(outcome))
        result = executor.execute(make_matchup()).result

        assert result.game_hash == hashlib.sha256(b"replay bytes").hexdigest()
        assert len(result.game_hash) == 64

    def test_game_hash_stable(self):
        """Identical outcomes hash identically, different ones do not."""
        matchup = make_matchup()
        first = compute_game_hash(matchup, EngineOutcome(winner="A", frame_count=5))
        second = compute_game_hash(matchup, EngineOutcome(winner="A", frame_count=5))
        other = compute_game_hash(matchup, EngineOutcome(winner="B", frame_count=5))
        assert first == second
        assert first != other

    def test_start_failure_produces_no_result(self):
        """An engine that cannot start raises GameExecutionError."""
        executor = GameExecutor(ScriptedEngine(error=GameExecutionError("no sandbox")))
        with pytest.raises(GameExecutionError):
            executor.execute(make_matchup())

    def test_os_error_is_execution_error(self):
        """OS-level start failures are execution faults."""
        executor = GameExecutor(ScriptedEngine(error=PermissionError("denied")))
        with pytest.raises(GameExecutionError):
            executor.execute(make_matchup())

    def test_unexpected_engine_error_propagates(self):
        """Unrecognized engine exceptions are not masked as execution faults."""
        executor = GameExecutor(ScriptedEngine(error=KeyError("bug")))
        with pytest.raises(KeyError):
            executor.execute(make_matchup())

    def test_disabled_bot_rejected(self):
        """A bot disabled after selection is not played."""
        store = MemoryStore()
        matchup = make_matchup(store)
        store.set_enabled(matchup.bot_b.id, False)
        engine = ScriptedEngine()
        executor = GameExecutor(engine, store=store)

        with pytest.raises(BotDisabledError) as exc_info:
            executor.execute(matchup)

        assert exc_info.value.bot_name == "b"
        assert isinstance(exc_info.value, GameExecutionError)
        assert engine.calls == 0


class TestRandomEngine:
    """Tests for RandomEngine."""

    def test_implements_protocol(self):
        """RandomEngine is a GameEngine."""
        assert isinstance(RandomEngine(), GameEngine)

    def test_plays_valid_games(self):
        """Random games have a winner, frames and events."""
        engine = RandomEngine(seed=0)
        outcome = engine.play(make_matchup(), GameLimits())

        assert outcome.winner in ("A", "B")
        assert outcome.frame_count > 0
        assert outcome.trace.events
        assert outcome.record

    def test_seeded(self):
        """The same seed plays the same game."""
        first = RandomEngine(seed=7).play(make_matchup(), GameLimits())
        second = RandomEngine(seed=7).play(make_matchup(), GameLimits())
        assert first == second

    def test_stronger_bot_wins_more(self):
        """Rating drives the win probability."""
        matchup = make_matchup()
        matchup = replace(matchup, bot_a=replace(matchup.bot_a, rating=2600))
        engine = RandomEngine(seed=1)

        wins = sum(engine.play(matchup, GameLimits()).winner == "A" for _ in range(200))
        assert wins > 150


def write_outcome(data):
    """subprocess.run replacement that writes an outcome file to the last argument."""

    def run(args, **kwargs):
        with open(args[-1], "w") as f:
            json.dump(data, f)
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    return run


class TestCommandEngine:
    """Tests for CommandEngine."""

    def make_engine(self, tmp_path):
        return CommandEngine(
            ["sandbox", "--map", "{map}", "{bot_a}:{race_a}", "{bot_b}:{race_b}", "{outcome}"],
            work_dir=tmp_path,
        )

    def test_renders_command(self, tmp_path):
        """Placeholders are substituted per game."""
        engine = self.make_engine(tmp_path)
        with patch("botladder.execution.engine.subprocess.run", side_effect=write_outcome({"winner": "A"})) as run:
            engine.play(make_matchup(), GameLimits(realtime_seconds=30))

        args = run.call_args.args[0]
        assert args[:5] == ["sandbox", "--map", "Python", "a:PROTOSS", "b:ZERG"]
        assert run.call_args.kwargs["timeout"] == 30

    def test_reads_outcome(self, tmp_path):
        """The outcome file is parsed into an EngineOutcome."""
        (tmp_path / "replay.rep").write_bytes(b"REPLAY")
        data = {
            "winner": "B",
            "crashed": {"A": True, "B": False},
            "frameCount": 4242,
            "events": [
                {"unit": 72, "event": "UNIT_CREATE", "count": 10},
                {"unit": "ZERG_ZERGLING", "event": 0, "count": 2},
                {"unit": 72, "event": "UNIT_TELEPORTED", "count": 1},
            ],
            "replay": "replay.rep",
        }
        engine = self.make_engine(tmp_path)
        with patch("botladder.execution.engine.subprocess.run", side_effect=write_outcome(data)):
            outcome = engine.play(make_matchup(), GameLimits())

        assert outcome.winner == "B"
        assert outcome.bot_a_crashed and not outcome.bot_b_crashed
        assert outcome.frame_count == 4242
        assert outcome.record == b"REPLAY"
        assert not outcome.partial
        assert [(g.unit, g.amount) for g in outcome.trace.to_game_events("g")] == [
            (UnitType.PROTOSS_CARRIER, 10),
            (UnitType.ZERG_ZERGLING, 2),
        ]

    def test_timeout_is_partial_realtime_timeout(self, tmp_path):
        """A killed game is a realtime timeout with a partial outcome."""
        engine = self.make_engine(tmp_path)
        with patch(
            "botladder.execution.engine.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="sandbox", timeout=1),
        ):
            outcome = engine.play(make_matchup(), GameLimits(realtime_seconds=1))

        assert outcome.realtime_timeout
        assert outcome.partial
        assert outcome.winner is None

    def test_missing_binary(self, tmp_path):
        """A missing sandbox binary is an execution fault."""
        engine = self.make_engine(tmp_path)
        with patch("botladder.execution.engine.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(GameExecutionError):
                engine.play(make_matchup(), GameLimits())

    def test_failure_without_outcome(self, tmp_path):
        """A failing command that wrote no outcome is an execution fault."""
        engine = self.make_engine(tmp_path)
        failed = subprocess.CompletedProcess([], 2, stdout="", stderr="sandbox crashed")
        with patch("botladder.execution.engine.subprocess.run", return_value=failed):
            with pytest.raises(GameExecutionError, match="without an outcome"):
                engine.play(make_matchup(), GameLimits())

    def test_failure_with_outcome_is_partial(self, tmp_path):
        """A failing command that wrote an outcome yields a partial result."""

        def run(args, **kwargs):
            with open(args[-1], "w") as f:
                json.dump({"winner": None, "crashed": {"A": True}}, f)
            return subprocess.CompletedProcess(args, 1, stdout="", stderr="")

        engine = self.make_engine(tmp_path)
        with patch("botladder.execution.engine.subprocess.run", side_effect=run):
            outcome = engine.play(make_matchup(), GameLimits())

        assert outcome.partial
        assert outcome.bot_a_crashed

    def test_invalid_winner(self, tmp_path):
        """An outcome naming an unknown side is rejected."""
        engine = self.make_engine(tmp_path)
        with patch("botladder.execution.engine.subprocess.run", side_effect=write_outcome({"winner": "C"})):
            with pytest.raises(GameExecutionError):
                engine.play(make_matchup(), GameLimits())

    def test_requires_command(self):
        """An empty command line is rejected."""
        with pytest.raises(ValueError):
            CommandEngine([])

    @pytest.mark.parametrize(
        "data",
        [
            {"winner": "A", "frameCount": "123"},
            {"winner": "A", "frameCount": -5},
            {"winner": "A", "crashed": ["A"]},
            {"winner": "A", "crashed": {"A": "yes"}},
            {"winner": "A", "frameTimeout": 1},
            {"winner": "A", "events": {"unit": 72}},
            {"winner": "A", "events": ["UNIT_CREATE"]},
            {"winner": "A", "events": [{"unit": 72, "event": "UNIT_CREATE", "count": "ten"}]},
            {"winner": "A", "events": [{"unit": [72], "event": "UNIT_CREATE", "count": 1}]},
            {"winner": "A", "replay": 17},
            ["A"],
        ],
    )
    def test_malformed_outcome(self, tmp_path, data):
        """Malformed outcome files are execution faults, not crashes."""
        engine = self.make_engine(tmp_path)
        with patch("botladder.execution.engine.subprocess.run", side_effect=write_outcome(data)):
            with pytest.raises(GameExecutionError):
                engine.play(make_matchup(), GameLimits())

    def test_malformed_outcome_abandons_game(self, tmp_path):
        """Through the executor, a malformed outcome abandons the game."""
        store = MemoryStore()
        executor = GameExecutor(self.make_engine(tmp_path), store=store)
        matchup = make_matchup(store)
        outcome = {"winner": "A", "frameCount": "123"}
        with patch("botladder.execution.engine.subprocess.run", side_effect=write_outcome(outcome)):
            with pytest.raises(GameExecutionError, match="frameCount"):
                executor.execute(matchup)
