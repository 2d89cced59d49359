"""Chronologically ordered event storage with time-range queries."""

from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterator

from evpipeline.event import Event


def _key(event: Event) -> datetime:
    return event.timestamp


def _now_like(reference: datetime) -> datetime:
    """The current time, aware or naive to match ``reference``."""
    return datetime.now(reference.tzinfo)


@dataclass
class ChordWindow:
    """A time window holding events that arrived close together."""

    start: datetime
    end: datetime
    events: list[Event] = field(default_factory=list)


class OrderedEventStore:
    """Keeps events sorted by timestamp; safe to share between threads."""

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = threading.RLock()

    def append(self, event: Event) -> None:
        """Insert an event, keeping chronological order.

        Events with equal timestamps keep their arrival order.
        """
        with self._lock:
            if not self._events or event.timestamp >= self._events[-1].timestamp:
                self._events.append(event)
                return
            idx = bisect.bisect_right(self._events, event.timestamp, key=_key)
            self._events.insert(idx, event)

    def get_range(self, start: datetime, end: datetime) -> list[Event]:
        """Events with ``start <= timestamp < end``, oldest first."""
        with self._lock:
            lo = bisect.bisect_left(self._events, start, key=_key)
            hi = bisect.bisect_left(self._events, end, key=_key)
            if lo >= len(self._events) or hi <= lo:
                return []
            return self._events[lo:hi]

    def get_since(self, since: datetime) -> list[Event]:
        """Events at or after ``since``, up to one hour into the future."""
        return self.get_range(since, _now_like(since) + timedelta(hours=1))

    def get_last(self, n: int) -> list[Event]:
        """The ``n`` most recent events, oldest first."""
        with self._lock:
            if n <= 0 or not self._events:
                return []
            return self._events[-n:]

    def get_all(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.get_all())

    def trim(self, keep: timedelta) -> int:
        """Drop events older than ``keep`` before now; return how many were dropped."""
        with self._lock:
            if not self._events:
                return 0
            cutoff = _now_like(self._events[0].timestamp) - keep
            idx = bisect.bisect_left(self._events, cutoff, key=_key)
            del self._events[:idx]
            return idx

    def detect_chords(self, window: timedelta, min_events: int) -> list[ChordWindow]:
        """Find, for each event, the events starting within ``window`` of it.

        A window is reported when it holds at least ``min_events`` events.
        """
        with self._lock:
            events = list(self._events)
        if len(events) < min_events:
            return []

        chords: list[ChordWindow] = []
        for i, first in enumerate(events):
            start = first.timestamp
            end = start + window
            stop = bisect.bisect_left(events, end, lo=i, key=_key)
            in_window = events[i:stop]
            if len(in_window) >= min_events:
                chords.append(ChordWindow(start=start, end=end, events=in_window))
        return chords

    def get_intervals(self) -> list[timedelta]:
        """Time between each pair of consecutive events."""
        with self._lock:
            events = list(self._events)
        return [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]