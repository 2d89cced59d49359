"""Error, warning and control-signal events for pipeline observability."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any


class ErrorSeverity(IntEnum):
    """Severity of an error event, ordered like log levels."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return self.name


class ControlSignal(IntEnum):
    """Control intent carried by an error event, separate from severity."""

    NONE = 0
    THROTTLE = 1
    SHED = 2
    BREAKER_OPEN = 3
    BREAKER_HALF = 4
    BREAKER_CLOSE = 5
    DEGRADED = 6
    RECOVERED = 7

    def __str__(self) -> str:
        return self.name


# Memory and resources
CODE_MEM_PRESSURE = "MEM_PRESSURE"
CODE_MEM_RELIEF = "MEM_RELIEF"
CODE_MEM_CRITICAL = "MEM_CRITICAL"
CODE_PSI_PRE_OOM = "PSI_PRE_OOM"
CODE_OOM_IMMINENT = "OOM_IMMINENT"
CODE_DEGRADED_MODE = "DEGRADED_MODE"
CODE_RECOVERED_MODE = "RECOVERED_MODE"

# Buffering and flow control
CODE_BUF_SAT = "BUF_SAT"
CODE_BUF_GROW = "BUF_GROW"
CODE_BUF_SHRINK = "BUF_SHRINK"
CODE_PUBLISH_BLOCK = "PUBLISH_BLOCK"
CODE_BACK_PRESSURE = "BACK_PRESSURE"
CODE_DROP_SLOW = "DROP_SLOW"
CODE_DROP_RED = "DROP_RED"
CODE_DROP_FULL = "DROP_FULL"

# Component failures
CODE_ADAPTER_FAIL = "ADAPTER_FAIL"
CODE_ADAPTER_START = "ADAPTER_START"
CODE_ADAPTER_STOP = "ADAPTER_STOP"
CODE_EMITTER_FAIL = "EMITTER_FAIL"
CODE_EMITTER_START = "EMITTER_START"
CODE_EMITTER_STOP = "EMITTER_STOP"

# Circuit breaker
CODE_BREAKER_OPEN = "BREAKER_OPEN"
CODE_BREAKER_HALF = "BREAKER_HALF"
CODE_BREAKER_CLOSE = "BREAKER_CLOSE"

# Worker scaling
CODE_WORKER_SCALE_UP = "WORKER_SCALE_UP"
CODE_WORKER_SCALE_DOWN = "WORKER_SCALE_DOWN"
CODE_WORKER_IDLE = "WORKER_IDLE"
CODE_WORKER_SATURATED = "WORKER_SATURATED"

# System health
CODE_HEALTH_CHECK = "HEALTH_CHECK"
CODE_PANIC = "PANIC"
CODE_SHUTDOWN = "SHUTDOWN"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ErrorEvent:
    """A pipeline internal error, warning or control signal."""

    severity: ErrorSeverity = ErrorSeverity.DEBUG
    signal: ControlSignal = ControlSignal.NONE
    code: str = ""
    message: str = ""
    component: str = ""
    timestamp: datetime = field(default_factory=_now)
    context: dict[str, Any] = field(default_factory=dict)
    recoverable: bool = False

    def with_signal(self, signal: ControlSignal) -> ErrorEvent:
        """Return a copy carrying the given control signal."""
        return dataclasses.replace(self, signal=signal)

    def with_context(self, key: str, value: Any) -> ErrorEvent:
        """Return a copy with one more context entry."""
        context = dict(self.context or {})
        context[key] = value
        return dataclasses.replace(self, context=context)

    def with_recoverable(self, recoverable: bool) -> ErrorEvent:
        """Return a copy with the recoverable flag set."""
        return dataclasses.replace(self, recoverable=recoverable)

    def __str__(self) -> str:
        return (
            f"[{self.severity}] {self.code}: {self.message} - {self.signal} "
            f"(component={self.component}, recoverable={str(self.recoverable).lower()})"
        )


def new_error_event(
    severity: ErrorSeverity, code: str, component: str, message: str
) -> ErrorEvent:
    """Create a recoverable error event stamped with the current time."""
    return ErrorEvent(
        severity=severity,
        signal=ControlSignal.NONE,
        code=code,
        component=component,
        message=message,
        timestamp=_now(),
        context={},
        recoverable=True,
    )