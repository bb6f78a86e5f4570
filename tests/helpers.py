"""Builders for bots and results used across the ladder tests."""

import itertools
from datetime import datetime, timedelta, timezone

from botladder.core import Bot, GameResult, Race, Rank

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

_game_ids = itertools.count(1)


def new_bot(
    name: str,
    race: Race = Race.PROTOSS,
    rank: Rank = Rank.UNRANKED,
    parent_id: int | None = None,
    **kwargs,
) -> Bot:
    """An unregistered bot."""
    return Bot(
        id=None,
        enabled=True,
        parent_id=parent_id,
        name=name,
        race=race,
        binary_path=f"bots/{name}",
        rank=rank,
        **kwargs,
    )


def game(
    bot_a: Bot,
    bot_b: Bot,
    winner: Bot | None = None,
    minutes: int = 0,
    map_name: str = "map",
    race_a: Race | None = None,
    race_b: Race | None = None,
    **kwargs,
) -> GameResult:
    """A result between two registered bots, `minutes` after T0."""
    loser = None
    if winner is not None:
        loser = bot_b if winner.same_as(bot_a) else bot_a
    return GameResult(
        id=f"game-{next(_game_ids):05d}",
        time=T0 + timedelta(minutes=minutes),
        game_realtime=kwargs.pop("game_realtime", 60.0),
        realtime_timeout=kwargs.pop("realtime_timeout", False),
        frame_timeout=kwargs.pop("frame_timeout", False),
        map=map_name,
        bot_a=bot_a,
        race_a=race_a or bot_a.race,
        bot_b=bot_b,
        race_b=race_b or bot_b.race,
        winner=winner,
        loser=loser,
        **kwargs,
    )
