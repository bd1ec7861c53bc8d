"""Interval scheduler merging per-source sampling periods into one wake schedule."""

from collections.abc import Iterable
from dataclasses import dataclass

from pyvmstat.models import SourceConfig, SourceKind


@dataclass(slots=True)
class _Entry:
    interval: int
    remaining: float


class IntervalScheduler:
    """
    Tracks how long until each enabled source is due.

    Each wake sleeps for the smallest remaining countdown. Sources with an
    interval of 0 are never scheduled.
    """

    def __init__(self, sources: Iterable[SourceConfig]) -> None:
        self._entries: dict[SourceKind, _Entry] = {}
        for source in sources:
            if source.enabled:
                self._entries[source.kind] = _Entry(source.interval, float(source.interval))

    @property
    def active(self) -> list[SourceKind]:
        """Scheduled sources in processing order."""
        return [kind for kind in SourceKind if kind in self._entries]

    def __bool__(self) -> bool:
        return bool(self._entries)

    def remaining(self, kind: SourceKind) -> float:
        """Seconds until kind is next due."""
        return self._entries[kind].remaining

    def interval(self, kind: SourceKind) -> int:
        return self._entries[kind].interval

    def disable(self, kind: SourceKind) -> None:
        """Stop scheduling kind for the rest of the run."""
        self._entries.pop(kind, None)

    def next_sleep(self) -> float:
        """Seconds until the earliest source is due."""
        if not self._entries:
            raise ValueError("no sources are scheduled")
        return min(entry.remaining for entry in self._entries.values())

    def advance(self, seconds: float) -> list[SourceKind]:
        """
        Let seconds pass and return the sources now due, in processing order.

        Due sources have their countdown reset to their full interval.
        """
        due = []
        for kind in self.active:
            entry = self._entries[kind]
            entry.remaining -= seconds
            if entry.remaining <= 0:
                entry.remaining = float(entry.interval)
                due.append(kind)
        return due
