"""
Matchmaking

Selects and reserves the next matchup for a worker.
"""

from .matchmaker import Matchmaker

__all__ = ["Matchmaker"]
