"""In-memory publish/subscribe event bus with filtering and back pressure."""

from __future__ import annotations

import functools
import itertools
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from evpipeline.event import Event
from evpipeline.telemetry import Metrics, Timer, default_metrics

DEFAULT_BUFFER_SIZE = 64
DEFAULT_BUS_NAME = "default"

# How often a blocked sender re-checks cancellation.
_POLL_INTERVAL = 0.05

_USE_DEFAULT_METRICS = object()


class BusClosedError(RuntimeError):
    """Raised when publishing to or subscribing on a closed bus."""

    def __init__(self, message: str = "bus is closed") -> None:
        super().__init__(message)


class PublishCancelled(RuntimeError):
    """Raised when a publish is attempted after its cancel event was set."""

    def __init__(self, message: str = "publish cancelled") -> None:
        super().__init__(message)


def _class_char(pattern: str, i: int) -> tuple[str, int] | None:
    """Read one (possibly escaped) character of a bracket class."""
    n = len(pattern)
    if i >= n or pattern[i] in "-]":
        return None
    if pattern[i] == "\\":
        i += 1
        if i >= n:
            return None
    return pattern[i], i + 1


def _parse_class(pattern: str, i: int) -> tuple[str, int] | None:
    """Translate a bracket class starting just after '['; None if malformed."""
    n = len(pattern)
    negated = i < n and pattern[i] == "^"
    if negated:
        i += 1
    ranges: list[tuple[str, str]] = []
    count = 0
    while True:
        if i < n and pattern[i] == "]" and count > 0:
            i += 1
            break
        got = _class_char(pattern, i)
        if got is None:
            return None
        lo, i = got
        hi = lo
        if i < n and pattern[i] == "-":
            got = _class_char(pattern, i + 1)
            if got is None:
                return None
            hi, i = got
        count += 1
        if lo <= hi:
            ranges.append((lo, hi))

    if not ranges:
        return ("[\\s\\S]" if negated else "(?!)"), i
    body = "".join(
        re.escape(lo) if lo == hi else f"{re.escape(lo)}-{re.escape(hi)}"
        for lo, hi in ranges
    )
    return f"[{'^' if negated else ''}{body}]", i


@functools.lru_cache(maxsize=512)
def _compile_pattern(pattern: str) -> re.Pattern[str] | None:
    """Compile a shell-style path pattern; None if the pattern is malformed.

    ``*`` and ``?`` do not match the path separator ``/``.
    """
    parts: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            parts.append("[^/]*")
            i += 1
        elif c == "?":
            parts.append("[^/]")
            i += 1
        elif c == "\\":
            if i + 1 >= n:
                return None
            parts.append(re.escape(pattern[i + 1]))
            i += 2
        elif c == "[":
            parsed = _parse_class(pattern, i + 1)
            if parsed is None:
                return None
            fragment, i = parsed
            parts.append(fragment)
        else:
            parts.append(re.escape(c))
            i += 1
    return re.compile("".join(parts), re.DOTALL)


def matches_any(value: str, patterns: Iterable[str]) -> bool:
    """True if ``value`` matches any of the wildcard patterns.

    Malformed patterns never match.
    """
    for pattern in patterns:
        compiled = _compile_pattern(pattern)
        if compiled is not None and compiled.fullmatch(value):
            return True
    return False


@dataclass
class Filter:
    """Criteria an event must meet to reach a subscription.

    Empty criteria match everything; given criteria must all match.
    """

    types: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


class Subscription:
    """A bounded queue of events delivered by an InMemoryBus."""

    def __init__(
        self, bus: InMemoryBus, sub_id: str, filter: Filter, buffer_size: int
    ) -> None:
        self.id = sub_id
        self.filter = filter
        self.buffer_size = buffer_size
        self._bus = bus
        self._items: deque[Event] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def _matches(self, event: Event) -> bool:
        f = self.filter
        if not f.types and not f.sources and not f.metadata:
            return True
        if f.types and not matches_any(event.type, f.types):
            return False
        if f.sources and not matches_any(event.source, f.sources):
            return False
        meta = event.metadata or {}
        return all(meta.get(key, "") == value for key, value in f.metadata.items())

    def receive(self, timeout: float | None = None) -> Event | None:
        """Return the next event, or None once closed and drained.

        Raises TimeoutError if nothing arrives within ``timeout`` seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._items:
                if self._closed:
                    return None
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError("no event received in time")
                    self._cond.wait(remaining)
            event = self._items.popleft()
            self._cond.notify_all()
            return event

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.receive()
            if event is None:
                return
            yield event

    def close(self) -> None:
        """Unsubscribe; events already queued can still be read."""
        self._bus._remove(self)
        self._close_channel()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _close_channel(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def _send(
        self,
        event: Event,
        drop_slow: bool,
        bus_name: str,
        metrics: Metrics | None,
        cancel: threading.Event | None,
        wait: bool,
    ) -> bool:
        """Deliver one event.

        Returns False only when the buffer is full, blocking is wanted and
        ``wait`` is False; the caller then retries with ``wait`` set.
        """
        with self._cond:
            if self._closed:
                return True
            started = time.perf_counter()
            full = len(self._items) >= self.buffer_size

            if drop_slow:
                if full:
                    if metrics is not None:
                        metrics.send_duration.labels(bus_name, self.id, "dropped").observe(
                            time.perf_counter() - started
                        )
                        metrics.events_dropped.labels(bus_name, event.type, self.id).inc()
                    return True
            elif full:
                if not wait:
                    return False
                if metrics is not None:
                    metrics.send_blocked.labels(bus_name, self.id).inc()
                while len(self._items) >= self.buffer_size:
                    if self._closed or (cancel is not None and cancel.is_set()):
                        return True
                    self._cond.wait(_POLL_INTERVAL)

            self._items.append(event)
            self._cond.notify_all()
            if metrics is not None:
                metrics.send_duration.labels(bus_name, self.id, "success").observe(
                    time.perf_counter() - started
                )
                metrics.buffer_usage.labels(bus_name, self.id).set(len(self._items))
            return True


class InMemoryBus:
    """Fan-out event bus with per-subscriber bounded buffers.

    With ``drop_slow`` set, events for a full subscriber are dropped;
    otherwise publishing waits until the subscriber has room.
    """

    def __init__(
        self,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        drop_slow: bool = False,
        name: str = DEFAULT_BUS_NAME,
        metrics: Metrics | None | object = _USE_DEFAULT_METRICS,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer size must be at least 1")
        self.buffer_size = buffer_size
        self.drop_slow = drop_slow
        self.name = name
        self.metrics: Metrics | None = (
            default_metrics() if metrics is _USE_DEFAULT_METRICS else metrics  # type: ignore[assignment]
        )
        self._subs: dict[str, Subscription] = {}
        self._lock = threading.RLock()
        self._closed = False
        self._ids = itertools.count()
        if self.metrics is not None:
            self.metrics.subscribers_total.labels(self.name).set(0)

    def publish(self, event: Event, cancel: threading.Event | None = None) -> None:
        """Send an event to every subscription whose filter matches it.

        Raises BusClosedError if the bus is closed and PublishCancelled if
        ``cancel`` is already set.
        """
        timer = Timer()
        metrics = self.metrics
        try:
            with self._lock:
                if self._closed:
                    raise BusClosedError()
                if cancel is not None and cancel.is_set():
                    raise PublishCancelled()
                subs = list(self._subs.values())

            matching: list[Subscription] = []
            for sub in subs:
                filter_timer = Timer()
                matched = sub._matches(event)
                if metrics is not None:
                    metrics.filter_duration.labels(self.name, sub.id).observe(
                        filter_timer.elapsed()
                    )
                if matched:
                    matching.append(sub)

            # Deliver to everyone with room first so one slow subscriber
            # does not hold up the others.
            waiting = [
                sub
                for sub in matching
                if not (cancel is not None and cancel.is_set())
                and not sub._send(event, self.drop_slow, self.name, metrics, cancel, wait=False)
            ]
            for sub in waiting:
                if cancel is not None and cancel.is_set():
                    break
                sub._send(event, self.drop_slow, self.name, metrics, cancel, wait=True)
        finally:
            if metrics is not None:
                metrics.publish_duration.labels(self.name, event.type).observe(timer.elapsed())
                metrics.events_published.labels(self.name, event.type).inc()

    def subscribe(self, filter: Filter | None = None) -> Subscription:
        """Create a subscription receiving events that match ``filter``."""
        with self._lock:
            if self._closed:
                raise BusClosedError()
            sub = Subscription(
                self, f"sub-{next(self._ids)}", filter or Filter(), self.buffer_size
            )
            self._subs[sub.id] = sub
            if self.metrics is not None:
                self.metrics.subscribers_total.labels(self.name).set(len(self._subs))
                self.metrics.buffer_size.labels(self.name, sub.id).set(self.buffer_size)
                self.metrics.buffer_usage.labels(self.name, sub.id).set(0)
            return sub

    def close(self) -> None:
        """Close the bus and every subscription; closing twice is harmless."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for sub in self._subs.values():
                sub._close_channel()
            self._subs.clear()

    def __enter__(self) -> InMemoryBus:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.pop(sub.id, None)
            if self.metrics is not None:
                self.metrics.subscribers_total.labels(self.name).set(len(self._subs))