"""
Result Recording
"""

from .recorder import ResultRecorder

__all__ = ["ResultRecorder"]
