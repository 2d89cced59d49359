# evpipeline

Building blocks for an in-process event pipeline, using only the standard
library. Every class is safe to share between threads.

- `evpipeline.event`: the `Event` envelope (id, type, source, timestamp,
  encoded `data`, `metadata`, correlation and causation ids), `JSONCodec` and
  `new_event`. Events serialise with `Event.to_json()` / `Event.from_json()`.
- `evpipeline.bus`: `InMemoryBus`, a fan-out publish/subscribe bus. Each
  subscription has a bounded buffer (64 by default). With `drop_slow=True`,
  events for a full subscriber are dropped. Otherwise publishing waits for
  room. A `Filter` matches on type and source with shell-style wildcards
  (`matches_any`) and on exact metadata values.
- `evpipeline.errors`: `ErrorEvent`, `ErrorSeverity`, `ControlSignal`,
  `new_error_event` and `CODE_*` constants such as `CODE_MEM_PRESSURE`.
- `evpipeline.error_bus`: `ErrorBus`, a bus for error events that never
  blocks. It drops events for full subscribers and counts them in
  `dropped_count`.
- `evpipeline.control`: control command dataclasses (`GovernorScaleCommand`,
  `WorkerScaleCommand`, `BufferResizeCommand`, `BufferOptimizeCommand`,
  `BusConfigCommand`, `ForceGCCommand`), the `EVENT_TYPE_*` names, and
  `new_control_event`, which wraps a command in an event with source
  `"control-lab"`.
- `evpipeline.ordered_store`: `OrderedEventStore`, which keeps events sorted by
  timestamp. It offers range queries, trimming, intervals between events and
  chord detection (`ChordWindow`).
- `evpipeline.registry`: `InMemoryRegistry` and `TypedRegistry`, a view of a
  registry that only accepts and returns values of one type.
- `evpipeline.statemachine`: `Machine`, a finite state machine with
  `Transition` guards and actions, `StateConfig` enter/exit hooks, and
  transition hooks. Failures raise `TransitionError`.
- `evpipeline.telemetry`: counters, gauges and histograms, with labelled
  families of each, plus `Timer`, `MetricRegistry`, `init_metrics` and
  `default_metrics`. `InMemoryBus` records its metrics here.

## Installation

```
pip install evpipeline
```

## Event bus

```python
import threading

from evpipeline.bus import Filter, InMemoryBus
from evpipeline.event import JSONCodec, new_event

with InMemoryBus(buffer_size=128) as bus:
    sub = bus.subscribe(Filter(types=["user.*"], metadata={"env": "test"}))

    evt = new_event("user.created", "api", {"name": "alice"}, JSONCodec())
    evt.with_metadata("env", "test").with_correlation_id("corr-1")
    bus.publish(evt)

    received = sub.receive(timeout=1.0)  # TimeoutError if nothing arrives
    print(received.type, received.decode_payload(JSONCodec()))

    cancel = threading.Event()
    bus.publish(evt, cancel=cancel)  # a set cancel raises PublishCancelled
```

After `close()`, calls to `publish` and `subscribe` raise `BusClosedError`.
`receive()` returns `None` once a subscription is closed and drained.
Iterating over a subscription yields events until then.

Payloads that are dataclasses are encoded as JSON objects. Pass the class as
`into` to decode them back:

```python
from evpipeline.control import (
    EVENT_TYPE_GOVERNOR_SCALE, GovernorScaleCommand, new_control_event,
)
from evpipeline.event import JSONCodec

evt = new_control_event(EVENT_TYPE_GOVERNOR_SCALE,
                        GovernorScaleCommand(scale=0.5, reason="memory pressure"))
cmd = evt.decode_payload(JSONCodec(), GovernorScaleCommand)
assert cmd.scale == 0.5
```

## Error bus

```python
from evpipeline.error_bus import ErrorBus
from evpipeline.errors import CODE_MEM_PRESSURE, ControlSignal, ErrorSeverity, new_error_event

bus = ErrorBus(buffer_size=32)
sub = bus.subscribe()
err = new_error_event(ErrorSeverity.WARNING, CODE_MEM_PRESSURE,
                      "monitor:memory", "memory at 87%").with_signal(ControlSignal.THROTTLE)
delivered = bus.publish(err)       # number of subscribers that got it
print(sub.receive(timeout=1.0))    # [WARNING] MEM_PRESSURE: memory at 87% - THROTTLE (...)
bus.close()
```

`subscribe_with_handler(handler, stop)` calls `handler` for each event on a
background thread. The thread stops when the `threading.Event` `stop` is set
or the subscription is closed.

## Ordered store

```python
from datetime import timedelta
from evpipeline.ordered_store import OrderedEventStore

store = OrderedEventStore()
# store.append(event) keeps events sorted even when they arrive out of order
store.get_range(start, end)                            # start <= timestamp < end
store.get_last(3)
store.trim(timedelta(seconds=30))                      # returns how many were removed
store.detect_chords(timedelta(milliseconds=50), 2)     # list of ChordWindow
store.get_intervals()                                  # list of timedelta
```

## Registry

```python
from evpipeline.registry import InMemoryRegistry, TypedRegistry

reg = InMemoryRegistry()
reg.set("count", 42)
counts = TypedRegistry(reg, int)
counts.get("count")          # 42
reg.set("name", "x")
counts.get("name")           # None: the value is not an int
counts.lookup("missing")     # KeyError
```

## State machine

```python
from evpipeline.statemachine import Machine, StateConfig, Transition

machine = Machine("idle")
machine.add_state(StateConfig("running", on_enter=lambda state: print("entered", state)))
machine.add_transition(Transition("idle", "running", "start"))
machine.on_transition(lambda src, dst, event: print(src, "->", dst, "on", event))
machine.trigger("start")
assert machine.current == "running"
assert machine.available_events() == []
```

A duplicate transition makes `add_transition` raise `ValueError`.

## Metrics

By default every `InMemoryBus` records to `default_metrics()`. You can pass your
own set instead, or `metrics=None` to record nothing:

```python
from evpipeline.bus import InMemoryBus
from evpipeline.telemetry import MetricRegistry, init_metrics

metrics = init_metrics(MetricRegistry())
bus = InMemoryBus(name="orders", metrics=metrics)
# ... publish ...
metrics.events_published.labels("orders", "order.created").value
```

## What it does not do

Everything stays in memory within one process. The package does not persist
events, connect buses across processes, or expose metrics over a network
endpoint. The control commands are data only: nothing in the package acts on
them. There is no command-line tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```