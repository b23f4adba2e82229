"""
History Aggregator - bounded log of per-round detection tallies
"""

import logging
from collections import Counter, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from livedetect.inference.detection import Detection

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 25


@dataclass(frozen=True)
class HistoryEntry:
    """Tally of one completed round."""

    timestamp: datetime
    tally: Mapping[str, int] = field(default_factory=dict)
    total_count: int = 0

    def __post_init__(self):
        object.__setattr__(self, "tally", MappingProxyType(dict(self.tally)))

    @property
    def summary(self) -> str:
        """Short form such as "person:2, car:1"."""
        return ", ".join(f"{label}:{count}" for label, count in self.tally.items())

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "time": self.timestamp.strftime("%H:%M:%S"),
            "tally": dict(self.tally),
            "total_count": self.total_count,
            "summary": self.summary,
        }


class HistoryAggregator:
    """
    Most-recent-first ring of HistoryEntry objects.

    Once the capacity is reached each new entry evicts the oldest one.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: deque[HistoryEntry] = deque(maxlen=capacity)

    def record(self, detections: Iterable[Detection]) -> HistoryEntry:
        """Tally a round's detections by class and prepend the entry."""
        tally = Counter(d.class_name for d in detections)
        entry = HistoryEntry(
            timestamp=datetime.now(),
            tally=dict(tally),
            total_count=sum(tally.values()),
        )
        self._entries.appendleft(entry)
        logger.debug(f"History: {entry.total_count} objs [{entry.summary}]")
        return entry

    def entries(self) -> list[HistoryEntry]:
        """Entries, most recent first."""
        return list(self._entries)

    def latest(self) -> HistoryEntry | None:
        return self._entries[0] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
