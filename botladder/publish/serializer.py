"""
Publish Serializers

Render publish snapshots as compact JSON documents for the ladder's web
frontend. Output is byte-stable: identical snapshots give identical bytes.
"""

import json
import logging
from typing import Any

from ..core.models import Bot, GameEvent, GameResult
from ..stats.aggregator import PublishSnapshot
from .sink import Publisher

logger = logging.getLogger(__name__)


def dumps(document: Any) -> str:
    """Compact JSON, key order as constructed."""
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False)


def order_bots(bots: list[Bot], results: list[GameResult]) -> list[Bot]:
    """
    Published bot order.

    Bots referenced by results come first, in the order the results mention
    them (bot A before bot B), followed by the remaining bots sorted by
    name. Referenced bots use the state from `bots` where available.
    """
    current = {bot.id: bot for bot in bots}
    ordered: dict[int, Bot] = {}
    for result in results:
        for bot in (result.bot_a, result.bot_b):
            if bot.id not in ordered:
                ordered[bot.id] = current.get(bot.id, bot)
    rest = sorted(
        (bot for bot in bots if bot.id not in ordered),
        key=lambda bot: (bot.name, bot.id),
    )
    return list(ordered.values()) + rest


def bot_to_dict(bot: Bot) -> dict[str, Any]:
    return {
        "name": bot.name,
        "race": bot.race.code,
        "rank": bot.rank.code,
        "rating": int(bot.rating),
    }


class GameResultsPublisher:
    """Renders the `stats` stream: bots, maps and per-game results."""

    stream_name = "stats"

    def render(
        self,
        bots: list[Bot],
        results: list[GameResult],
        events: list[GameEvent] | None = None,
    ) -> str:
        """
        Render the document.

        Args:
            bots: Enabled bots to publish
            results: Results to publish, in publish order
            events: Unit event groups that met the publish threshold

        Returns:
            Compact JSON string.
        """
        ordered = order_bots(bots, results)
        bot_index = {bot.id: i for i, bot in enumerate(ordered)}

        maps: list[str] = []
        map_index: dict[str, int] = {}
        for result in results:
            if result.map not in map_index:
                map_index[result.map] = len(maps)
                maps.append(result.map)

        events_by_game: dict[str, list[GameEvent]] = {}
        for event in events or []:
            events_by_game.setdefault(event.game_id, []).append(event)

        document = {
            "bots": [bot_to_dict(bot) for bot in ordered],
            "maps": maps,
            "results": [
                self._result_to_dict(result, bot_index, map_index, events_by_game.get(result.id))
                for result in results
            ],
        }
        return dumps(document)

    def _result_to_dict(
        self,
        result: GameResult,
        bot_index: dict[int, int],
        map_index: dict[str, int],
        events: list[GameEvent] | None,
    ) -> dict[str, Any]:
        def side(bot: Bot, race, crashed: bool) -> dict[str, Any]:
            return {
                "botIndex": bot_index[bot.id],
                "race": race.code,
                "winner": bot.same_as(result.winner),
                "loser": bot.same_as(result.loser),
                "crashed": crashed,
            }

        return {
            "botA": side(result.bot_a, result.race_a, result.bot_a_crashed),
            "botB": side(result.bot_b, result.race_b, result.bot_b_crashed),
            "invalidGame": result.invalid,
            "realTimeout": result.realtime_timeout,
            "frameTimeout": result.frame_timeout,
            "endedAt": result.ended_at,
            "mapIndex": map_index[result.map],
            "gameHash": result.game_hash,
            "frameCount": result.frame_count,
            "gameEvents": [
                {"unit": int(e.unit), "event": int(e.event), "amount": e.amount}
                for e in events
            ]
            if events
            else None,
        }

    def publish(self, snapshot: PublishSnapshot, sink: Publisher) -> str:
        """Render the snapshot and write it to the sink."""
        document = self.render(snapshot.bots, snapshot.results, snapshot.events)
        with sink.open_writer(self.stream_name) as writer:
            writer.write(document)
        logger.info(f"Published {len(snapshot.results)} results to '{self.stream_name}'")
        return document


class BotStatsPublisher:
    """
    Renders the `botStats` stream: per-bot map and race-vs-race tallies,
    head-to-head records and ladder-wide figures.
    """

    stream_name = "botStats"

    def render(self, snapshot: PublishSnapshot) -> str:
        bots = sorted(snapshot.bots, key=lambda bot: (bot.name, bot.id))
        bot_index = {bot.id: i for i, bot in enumerate(bots)}

        race_vs_race: dict[int, list[dict[str, Any]]] = {}
        for stat in snapshot.race_vs_race:
            race_vs_race.setdefault(stat.bot.id, []).append(
                {
                    "race": stat.race.code,
                    "enemyRace": stat.enemy_race.code,
                    "won": stat.won,
                    "lost": stat.lost,
                }
            )

        bot_entries = []
        for bot in bots:
            maps = snapshot.map_stats.get(bot.id, [])
            entry = bot_to_dict(bot)
            entry["won"] = sum(m.won for m in maps)
            entry["lost"] = sum(m.lost for m in maps)
            entry["maps"] = [{"map": m.map, "won": m.won, "lost": m.lost} for m in maps]
            entry["raceVsRace"] = race_vs_race.get(bot.id, [])
            bot_entries.append(entry)

        # Head-to-head between bots that are still published
        head_to_head = [
            {"winner": bot_index[h.bot_a.id], "loser": bot_index[h.bot_b.id], "won": h.won}
            for h in snapshot.head_to_head
            if h.bot_a.id in bot_index and h.bot_b.id in bot_index
        ]

        document = {
            "bots": bot_entries,
            "headToHead": head_to_head,
            "raceWins": [
                {"winner": winner.code, "loser": loser.code, "won": won}
                for (winner, loser), won in snapshot.race_wins.items()
            ],
            "crashes": snapshot.crashes,
            "averageGameRealtime": (
                round(snapshot.average_game_realtime, 3)
                if snapshot.average_game_realtime is not None
                else None
            ),
        }
        return dumps(document)

    def publish(self, snapshot: PublishSnapshot, sink: Publisher) -> str:
        document = self.render(snapshot)
        with sink.open_writer(self.stream_name) as writer:
            writer.write(document)
        logger.info(f"Published stats of {len(snapshot.bots)} bots to '{self.stream_name}'")
        return document
