"""In-process metrics: counters, gauges and histograms, optionally labelled."""

from __future__ import annotations

import bisect
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Mapping, TypeVar

LATENCY_BUCKETS: tuple[float, ...] = (
    0.000001,
    0.000002,
    0.000005,
    0.00001,
    0.00002,
    0.00005,
    0.0001,
    0.0002,
    0.0005,
    0.001,
    0.002,
    0.005,
    0.01,
    0.02,
    0.05,
    0.1,
)


class Counter:
    """A value that only goes up."""

    def __init__(
        self,
        name: str = "",
        description: str = "",
        label_values: Mapping[str, str] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.label_values = dict(label_values or {})
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counter cannot decrease")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        with self._lock:
            return self._value


class Gauge:
    """A value that can be set to anything."""

    def __init__(
        self,
        name: str = "",
        description: str = "",
        label_values: Mapping[str, str] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.label_values = dict(label_values or {})
        self._value = 0.0
        self._lock = threading.Lock()

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value


class Histogram:
    """Counts observations into upper-bounded buckets."""

    def __init__(
        self,
        name: str = "",
        description: str = "",
        buckets: Iterable[float] = LATENCY_BUCKETS,
        label_values: Mapping[str, str] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.buckets = tuple(sorted(buckets))
        self.label_values = dict(label_values or {})
        # One slot per bound plus an overflow slot for +Inf.
        self._counts = [0] * (len(self.buckets) + 1)
        self._sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        slot = bisect.bisect_left(self.buckets, value)
        with self._lock:
            self._counts[slot] += 1
            self._sum += value

    @property
    def count(self) -> int:
        with self._lock:
            return sum(self._counts)

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def bucket_counts(self) -> list[int]:
        """Cumulative counts of observations at or below each bucket bound."""
        with self._lock:
            counts = self._counts[:-1]
        result: list[int] = []
        running = 0
        for c in counts:
            running += c
            result.append(running)
        return result


M = TypeVar("M")


class _MetricVec(Generic[M]):
    def __init__(
        self,
        name: str,
        description: str,
        label_names: Iterable[str],
        factory: Callable[[dict[str, str]], M],
    ) -> None:
        self.name = name
        self.description = description
        self.label_names = tuple(label_names)
        self._factory = factory
        self._children: dict[tuple[str, ...], M] = {}
        self._lock = threading.Lock()

    def _child(self, args: tuple[object, ...]) -> M:
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(args)}"
            )
        key = tuple(str(a) for a in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._factory(dict(zip(self.label_names, key)))
                self._children[key] = child
            return child

    def _child_for(self, labels: Mapping[str, object]) -> M:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"{self.name}: labels {sorted(labels)} do not match {list(self.label_names)}"
            )
        return self._child(tuple(labels[n] for n in self.label_names))

    def children(self) -> dict[tuple[str, ...], M]:
        with self._lock:
            return dict(self._children)


class CounterVec(_MetricVec[Counter]):
    """A family of counters partitioned by labels."""

    def __init__(self, name: str, description: str, label_names: Iterable[str]) -> None:
        super().__init__(
            name,
            description,
            label_names,
            lambda values: Counter(name, description, values),
        )

    def labels(self, *args: object) -> Counter:
        """Return the counter for the given label values, in order."""
        return self._child(args)

    def with_labels(self, labels: Mapping[str, object]) -> Counter:
        """Return the counter for a mapping of label names to values."""
        return self._child_for(labels)


class GaugeVec(_MetricVec[Gauge]):
    """A family of gauges partitioned by labels."""

    def __init__(self, name: str, description: str, label_names: Iterable[str]) -> None:
        super().__init__(
            name,
            description,
            label_names,
            lambda values: Gauge(name, description, values),
        )

    def labels(self, *args: object) -> Gauge:
        """Return the gauge for the given label values, in order."""
        return self._child(args)

    def with_labels(self, labels: Mapping[str, object]) -> Gauge:
        """Return the gauge for a mapping of label names to values."""
        return self._child_for(labels)


class HistogramVec(_MetricVec[Histogram]):
    """A family of histograms partitioned by labels."""

    def __init__(
        self,
        name: str,
        description: str,
        label_names: Iterable[str],
        buckets: Iterable[float] = LATENCY_BUCKETS,
    ) -> None:
        self.buckets = tuple(sorted(buckets))
        super().__init__(
            name,
            description,
            label_names,
            lambda values: Histogram(name, description, self.buckets, values),
        )

    def labels(self, *args: object) -> Histogram:
        """Return the histogram for the given label values, in order."""
        return self._child(args)

    def with_labels(self, labels: Mapping[str, object]) -> Histogram:
        """Return the histogram for a mapping of label names to values."""
        return self._child_for(labels)


class MetricRegistry:
    """Holds metrics by unique name."""

    def __init__(self) -> None:
        self._metrics: dict[str, object] = {}
        self._lock = threading.Lock()

    def register(self, metric):
        name = metric.name
        with self._lock:
            if name in self._metrics:
                raise ValueError(f"metric {name!r} is already registered")
            self._metrics[name] = metric
        return metric

    def get(self, name: str):
        with self._lock:
            try:
                return self._metrics[name]
            except KeyError:
                raise KeyError(f"no metric named {name!r}") from None

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._metrics)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._metrics


DEFAULT_REGISTRY = MetricRegistry()


@dataclass
class Metrics:
    """Every metric the pipeline records."""

    events_published: CounterVec
    events_dropped: CounterVec
    publish_duration: HistogramVec
    filter_duration: HistogramVec
    send_duration: HistogramVec
    send_blocked: CounterVec
    subscribers_total: GaugeVec
    buffer_usage: GaugeVec
    buffer_size: GaugeVec
    engine_operations: CounterVec
    engine_duration: HistogramVec


_default_metrics: Metrics | None = None
_default_lock = threading.RLock()


def init_metrics(registry: MetricRegistry | None = None) -> Metrics:
    """Create and register the pipeline metrics; they become the default set."""
    global _default_metrics
    reg = DEFAULT_REGISTRY if registry is None else registry

    metrics = Metrics(
        events_published=reg.register(
            CounterVec(
                "pipeline_events_published_total",
                "Total number of events published to the bus",
                ("bus", "event_type"),
            )
        ),
        events_dropped=reg.register(
            CounterVec(
                "pipeline_events_dropped_total",
                "Total number of events dropped due to slow subscribers",
                ("bus", "event_type", "subscription_id"),
            )
        ),
        publish_duration=reg.register(
            HistogramVec(
                "pipeline_event_publish_duration_seconds",
                "Time taken to publish an event (including filtering and sending to all subscribers)",
                ("bus", "event_type"),
            )
        ),
        filter_duration=reg.register(
            HistogramVec(
                "pipeline_event_filter_duration_seconds",
                "Time taken to filter events against subscription criteria",
                ("bus", "subscription_id"),
            )
        ),
        send_duration=reg.register(
            HistogramVec(
                "pipeline_event_send_duration_seconds",
                "Time taken to send event to subscription channel (includes blocking time)",
                ("bus", "subscription_id", "result"),
            )
        ),
        send_blocked=reg.register(
            CounterVec(
                "pipeline_event_send_blocked_total",
                "Number of times event send blocked waiting for channel space",
                ("bus", "subscription_id"),
            )
        ),
        subscribers_total=reg.register(
            GaugeVec(
                "pipeline_subscribers_total",
                "Current number of active subscribers",
                ("bus",),
            )
        ),
        buffer_usage=reg.register(
            GaugeVec(
                "pipeline_subscription_buffer_usage",
                "Current number of events in subscription buffer",
                ("bus", "subscription_id"),
            )
        ),
        buffer_size=reg.register(
            GaugeVec(
                "pipeline_subscription_buffer_size",
                "Maximum capacity of subscription buffer",
                ("bus", "subscription_id"),
            )
        ),
        engine_operations=reg.register(
            CounterVec(
                "pipeline_engine_operations_total",
                "Total number of engine operations",
                ("operation", "status"),
            )
        ),
        engine_duration=reg.register(
            HistogramVec(
                "pipeline_engine_operation_duration_seconds",
                "Time taken for engine operations",
                ("operation",),
            )
        ),
    )

    with _default_lock:
        _default_metrics = metrics
    return metrics


def default_metrics() -> Metrics:
    """Return the default metrics, creating them in the default registry if needed."""
    with _default_lock:
        if _default_metrics is None:
            return init_metrics(None)
        return _default_metrics


class Timer:
    """Measures time since its creation."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed(self) -> float:
        """Seconds elapsed since the timer started."""
        return time.perf_counter() - self._start

    def observe(self, histogram: Histogram) -> None:
        histogram.observe(self.elapsed())

    def observe_with_labels(self, histogram: HistogramVec, labels: Mapping[str, object]) -> None:
        histogram.with_labels(labels).observe(self.elapsed())