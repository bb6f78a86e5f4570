"""
Tests for the Stats Aggregator and rating model
"""

from datetime import timedelta

import pytest

from botladder.core import EventTrace, Race, Rank, UnitEventType, UnitType
from botladder.stats import EloRating, StatsAggregator, rank_for_rating
from helpers import T0, game, new_bot

NOW = T0 + timedelta(hours=1)


def aggregator_for(store, **kwargs):
    return StatsAggregator(store, now=lambda: NOW, **kwargs)


class TestRankTiers:
    """Tests for mapping ratings to tiers."""

    @pytest.mark.parametrize(
        "rating,rank",
        [
            (1200, Rank.F),
            (1699, Rank.F),
            (1700, Rank.E),
            (1850, Rank.D),
            (1999, Rank.C),
            (2000, Rank.B),
            (2150, Rank.A),
            (2299, Rank.A),
            (2300, Rank.S),
            (2900, Rank.S),
        ],
    )
    def test_thresholds(self, rating, rank):
        """Tier lower bounds are inclusive."""
        assert rank_for_rating(rating) == rank


class TestEloRating:
    """Tests for EloRating."""

    def test_expected_score_symmetric(self):
        """Expected scores of both sides sum to one."""
        elo = EloRating()
        assert elo.expected_score(2000, 2000) == pytest.approx(0.5)
        assert elo.expected_score(2100, 1900) + elo.expected_score(1900, 2100) == pytest.approx(1)

    def test_more_wins_higher_rating(self):
        """For the same number of games, more wins never lower the rating."""
        elo = EloRating()
        ratings = [elo.new_rating(2000, won, 10 - won, 2050) for won in range(11)]
        assert ratings == sorted(ratings)
        assert len(set(ratings)) == len(ratings)

    def test_even_record_against_equal_field(self):
        """Even results against an equal field keep the rating."""
        assert EloRating().new_rating(2000, 5, 5, 2000) == 2000

    def test_empty_field_uses_initial_rating(self):
        """A bot alone on the ladder is scored against the initial rating."""
        assert EloRating(initial_rating=1500).field_rating([]) == 1500
        assert EloRating().field_rating([1900, 2100]) == 2000


class TestStatsAggregator:
    """Tests for building publish snapshots."""

    def test_rankings_from_decisive_games(self, store):
        """Wins since the watermark move ratings and tiers."""
        a = store.add_bot(new_bot("a", Race.PROTOSS))
        b = store.add_bot(new_bot("b", Race.ZERG))
        store.save(game(a, b, winner=a, minutes=1), [])
        store.save(game(a, b, winner=a, minutes=2), [])
        store.save(game(a, b, winner=b, minutes=3), [])
        store.save(game(a, b, realtime_timeout=True, minutes=4), [])

        snapshot = aggregator_for(store).aggregate()

        updates = {u.bot_id: (u.old_rating, u.new_rating, u.rank) for u in snapshot.rankings}
        assert updates == {a.id: (2000, 2016, Rank.B), b.id: (2000, 1984, Rank.C)}
        assert {bot.name: bot.rating for bot in snapshot.bots} == {"a": 2016, "b": 1984}
        # Nothing is persisted until the rankings are applied
        assert store.get_bot(a.id).rating == 2000

    def test_apply_rankings_advances_watermark(self, store):
        """Applied rankings are not counted again by the next cycle."""
        a = store.add_bot(new_bot("a"))
        b = store.add_bot(new_bot("b"))
        store.save(game(a, b, winner=a, minutes=1), [])
        aggregator = aggregator_for(store)

        aggregator.apply_rankings(aggregator.aggregate())

        assert store.get_bot(a.id).rating > 2000
        assert store.get_bot(a.id).last_updated == NOW
        assert aggregator.aggregate().rankings == []

    def test_window_filters_results(self, store):
        """Only results within the publish window are included."""
        a = store.add_bot(new_bot("a"))
        b = store.add_bot(new_bot("b"))
        old = game(a, b, winner=a, minutes=-60 * 24 * 10)
        recent = game(a, b, winner=b, minutes=5)
        store.save(old, [])
        store.save(recent, [])

        windowed = aggregator_for(store, window=timedelta(days=7)).aggregate()
        everything = aggregator_for(store, window=None).aggregate()

        assert [r.id for r in windowed.results] == [recent.id]
        assert [r.id for r in everything.results] == [old.id, recent.id]

    def test_event_threshold(self, store):
        """Only event groups meeting the threshold make the snapshot."""
        a = store.add_bot(new_bot("a"))
        b = store.add_bot(new_bot("b"))
        result = game(a, b, winner=a)
        trace = EventTrace()
        trace.add(UnitType.PROTOSS_CARRIER, UnitEventType.UNIT_CREATE, 8)
        trace.add(UnitType.ZERG_ZERGLING, UnitEventType.UNIT_CREATE, 7)
        store.save(result, trace.to_game_events(result.id))

        snapshot = aggregator_for(store, event_threshold=8).aggregate()

        assert [(e.unit, e.amount) for e in snapshot.events] == [(UnitType.PROTOSS_CARRIER, 8)]
        assert list(snapshot.events_by_game()) == [result.id]

    def test_disabled_bots_not_ranked(self, store):
        """Disabled bots are left out of the snapshot and of rankings."""
        a = store.add_bot(new_bot("a"))
        b = store.add_bot(new_bot("b"))
        store.save(game(a, b, winner=a), [])
        store.set_enabled(b.id, False)

        snapshot = aggregator_for(store).aggregate()

        assert [bot.name for bot in snapshot.bots] == ["a"]
        assert [u.bot_id for u in snapshot.rankings] == [a.id]

    def test_ladder_figures(self, store):
        """Race wins, crashes and per-map tallies are collected."""
        a = store.add_bot(new_bot("a", Race.PROTOSS))
        b = store.add_bot(new_bot("b", Race.ZERG))
        store.save(game(a, b, winner=a, bot_b_crashed=True, map_name="Python"), [])

        snapshot = aggregator_for(store).aggregate()

        assert snapshot.crashes == 1
        assert snapshot.race_wins[(Race.PROTOSS, Race.ZERG)] == 1
        assert snapshot.race_wins[(Race.ZERG, Race.PROTOSS)] == 0
        assert [(m.map, m.won) for m in snapshot.map_stats[a.id]] == [("Python", 1)]
        assert snapshot.taken_at == NOW


def counted(snapshot):
    return {(u.bot_id, u.won, u.lost) for u in snapshot.rankings}


class TestRankingWatermark:
    """Every decisive game feeds the ratings exactly once under live game traffic."""

    def test_game_saved_during_cycle_counted_once(self, store):
        """A game saved while a cycle reads is counted by the next cycle only."""
        a = store.add_bot(new_bot("a"))
        b = store.add_bot(new_bot("b"))
        store.save(game(a, b, winner=a, minutes=1), [])
        aggregator = aggregator_for(store)

        read = store.games_since_bot_watermark

        def read_while_saving(up_to=None):
            # Ends after the snapshot time, saved mid-cycle
            store.save(game(a, b, winner=a, minutes=61), [])
            return read(up_to=up_to)

        store.games_since_bot_watermark = read_while_saving
        first = aggregator.aggregate()
        store.games_since_bot_watermark = read
        aggregator.apply_rankings(first)

        second = aggregator.aggregate()
        aggregator.apply_rankings(second)

        assert counted(first) == {(a.id, 1, 0), (b.id, 0, 1)}
        assert counted(second) == {(a.id, 1, 0), (b.id, 0, 1)}
        assert aggregator.aggregate().rankings == []

    def test_early_game_saved_late_is_counted(self, store):
        """A game that ended before the snapshot but was saved after it still counts."""
        a = store.add_bot(new_bot("a"))
        b = store.add_bot(new_bot("b"))
        store.save(game(a, b, winner=a, minutes=1), [])
        aggregator = aggregator_for(store)

        first = aggregator.aggregate()
        store.save(game(a, b, winner=b, minutes=30), [])
        aggregator.apply_rankings(first)

        second = aggregator.aggregate()

        assert counted(first) == {(a.id, 1, 0), (b.id, 0, 1)}
        assert counted(second) == {(a.id, 0, 1), (b.id, 1, 0)}
        assert second.sequence == 2
