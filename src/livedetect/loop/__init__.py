"""
Poll loop module for LiveDetect.

Provides:
- PollLoopController: fixed-cadence, skip-if-busy detection loop
- SessionContext / DetectionParameters: per-session state
- HistoryAggregator / HistoryEntry: rolling tally log
"""

from .controller import LoopState, LoopStats, PollLoopController
from .history import HistoryAggregator, HistoryEntry
from .session import DetectionParameters, SessionContext

__all__ = [
    "PollLoopController",
    "LoopState",
    "LoopStats",
    "SessionContext",
    "DetectionParameters",
    "HistoryAggregator",
    "HistoryEntry",
]
