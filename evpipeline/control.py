"""Control commands carried as events on the internal bus."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from evpipeline.event import Event, JSONCodec, new_event

EVENT_TYPE_GOVERNOR_SCALE = "control.governor.scale"
EVENT_TYPE_WORKER_SCALE = "control.worker.scale"
EVENT_TYPE_BUFFER_RESIZE = "control.buffer.resize"
EVENT_TYPE_BUFFER_OPTIMIZE = "control.buffer.optimize"
EVENT_TYPE_BUS_CONFIG = "control.bus.config"
EVENT_TYPE_FORCE_GC = "control.gc.force"

CONTROL_SOURCE = "control-lab"

_OMIT_EMPTY = {"omitempty": True}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GovernorScaleCommand:
    """Asks the governor to throttle: 1.0 full speed, 0.1 minimum."""

    scale: float = 0.0
    reason: str = ""
    source: str = ""
    timestamp: datetime = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict, metadata=_OMIT_EMPTY)


@dataclass
class WorkerScaleCommand:
    """Asks the worker pool to "scale_up", "scale_down" or "set_count"."""

    action: str = ""
    count: int = field(default=0, metadata=_OMIT_EMPTY)
    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


@dataclass
class BufferResizeCommand:
    """Resizes "all", "external", "internal" or one subscription's buffers."""

    target: str = ""
    new_size: int = 0
    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


@dataclass
class BufferOptimizeCommand:
    """Shrinks buffers whose utilisation is below ``min_utilization``."""

    min_utilization: float = 0.0
    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


@dataclass
class BusConfigCommand:
    """Changes bus settings at runtime; None leaves a setting unchanged."""

    drop_slow: bool | None = field(default=None, metadata=_OMIT_EMPTY)
    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


@dataclass
class ForceGCCommand:
    """Requests an immediate garbage collection."""

    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


def new_control_event(event_type: str, payload: Any) -> Event:
    """Create a control event with source "control-lab" and a JSON payload."""
    return new_event(event_type, CONTROL_SOURCE, payload, JSONCodec())