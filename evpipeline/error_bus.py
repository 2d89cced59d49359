"""A bounded, lossy, never-blocking bus for error events."""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from typing import Callable, Iterator

from evpipeline.errors import ErrorEvent

DEFAULT_BUFFER_SIZE = 32

ErrorHandler = Callable[[ErrorEvent], None]


class ErrorBusClosed(RuntimeError):
    """Raised when subscribing to an error bus that has been closed."""

    def __init__(self, message: str = "error bus is closed") -> None:
        super().__init__(message)


_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def _next_subscription_id() -> str:
    with _id_lock:
        n = next(_id_counter)
    return chr(ord("A") + (n - 1) % 26) + chr(ord("0") + (n - 1) // 26)


class ErrorSubscription:
    """A bounded queue of error events delivered by an ErrorBus."""

    def __init__(self, buffer_size: int) -> None:
        self.id = _next_subscription_id()
        self.buffer_size = buffer_size
        self._items: deque[ErrorEvent] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def _offer(self, event: ErrorEvent) -> bool | None:
        """Queue without blocking: True if queued, False if full, None if closed."""
        with self._cond:
            if self._closed:
                return None
            if len(self._items) >= self.buffer_size:
                return False
            self._items.append(event)
            self._cond.notify()
            return True

    def receive(self, timeout: float | None = None) -> ErrorEvent | None:
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
                        raise TimeoutError("no error event received in time")
                    self._cond.wait(remaining)
            return self._items.popleft()

    def __iter__(self) -> Iterator[ErrorEvent]:
        while True:
            event = self.receive()
            if event is None:
                return
            yield event

    def close(self) -> None:
        """Stop receiving events; already queued events can still be read."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class ErrorBus:
    """Fan-out bus that drops events for subscribers whose buffers are full."""

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self.buffer_size = buffer_size if buffer_size > 0 else DEFAULT_BUFFER_SIZE
        self._subs: tuple[ErrorSubscription, ...] = ()
        self._lock = threading.Lock()
        self._dropped = 0
        self._dropped_lock = threading.Lock()
        self._closed = False

    def publish(self, event: ErrorEvent) -> int:
        """Deliver to every subscriber without blocking; return deliveries made."""
        delivered = 0
        for sub in self._subs:
            result = sub._offer(event)
            if result is None:
                continue
            if result:
                delivered += 1
            else:
                with self._dropped_lock:
                    self._dropped += 1
        return delivered

    def subscribe(self) -> ErrorSubscription:
        """Create a subscription for events published from now on."""
        with self._lock:
            if self._closed:
                raise ErrorBusClosed()
            sub = ErrorSubscription(self.buffer_size)
            self._subs = self._subs + (sub,)
            return sub

    def unsubscribe(self, subscription: ErrorSubscription) -> None:
        """Close a subscription and remove it from the bus."""
        with self._lock:
            if self._closed:
                return
            subscription.close()
            self._subs = tuple(s for s in self._subs if s is not subscription)

    def close(self) -> None:
        """Close the bus and every subscription; closing twice is harmless."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for sub in self._subs:
                sub.close()
            self._subs = ()

    @property
    def dropped_count(self) -> int:
        """Events dropped across all subscribers because buffers were full."""
        with self._dropped_lock:
            return self._dropped

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def subscribe_with_handler(
        self,
        handler: ErrorHandler,
        stop: threading.Event | None = None,
    ) -> ErrorSubscription:
        """Subscribe and feed events to ``handler`` on a background thread.

        The thread ends, closing the subscription, when ``stop`` is set or
        the subscription is closed.
        """
        sub = self.subscribe()
        stop_event = stop if stop is not None else threading.Event()

        def run() -> None:
            try:
                while not stop_event.is_set():
                    try:
                        event = sub.receive(timeout=0.05)
                    except TimeoutError:
                        continue
                    if event is None:
                        return
                    if stop_event.is_set():
                        return
                    handler(event)
            finally:
                sub.close()

        threading.Thread(target=run, name=f"error-handler-{sub.id}", daemon=True).start()
        return sub