"""
Rating and Rank Tiers

Elo-style rating updates from win/loss counts and the tier table that maps
ratings to presentation ranks.
"""

import numpy as np

from ..core.models import DEFAULT_RATING, Rank

# Lower bounds of tiers E, D, C, B, A and S; anything below is F
RANK_THRESHOLDS = (1700, 1800, 1900, 2000, 2150, 2300)
_TIERS = (Rank.F, Rank.E, Rank.D, Rank.C, Rank.B, Rank.A, Rank.S)


def rank_for_rating(rating: float) -> Rank:
    """Map a rating to its tier."""
    return _TIERS[int(np.digitize(rating, RANK_THRESHOLDS))]


class EloRating:
    """
    Rating updates from a batch of decisive games.

    A bot's games since its last update are scored against the mean rating
    of the rest of the ladder. For a fixed number of games the new rating
    grows strictly with the number of wins.
    """

    def __init__(self, k_factor: float = 32, initial_rating: int = DEFAULT_RATING):
        """
        Initialize the rating model.

        Args:
            k_factor: Rating adjustment factor (higher = more volatile)
            initial_rating: Rating of a new bot
        """
        self.k_factor = k_factor
        self.initial_rating = initial_rating

    def expected_score(self, rating_a: float, rating_b: float) -> float:
        """Expected score (0-1) of a player rated `rating_a` against `rating_b`."""
        return 1 / (1 + 10 ** ((rating_b - rating_a) / 400))

    def field_rating(self, ratings: list[float]) -> float:
        """Mean rating of the opposition, or the initial rating without any."""
        if not ratings:
            return float(self.initial_rating)
        return float(np.mean(ratings))

    def new_rating(self, rating: float, won: int, lost: int, opponents: float) -> int:
        """
        Rating after `won` wins and `lost` losses against a field rated
        `opponents` on average.
        """
        expected = self.expected_score(rating, opponents)
        return int(round(rating + self.k_factor * (won - expected * (won + lost))))
