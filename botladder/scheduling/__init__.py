"""
Scheduling

Worker state machine and the pool that runs it.
"""

from .pool import WorkerPool
from .worker import LadderWorker, WorkerState

__all__ = ["WorkerPool", "LadderWorker", "WorkerState"]
