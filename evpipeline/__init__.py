"""In-process event pipeline: buses, events, ordered store, registry, state machine and metrics."""

__version__ = "0.1.0"
__all__ = [
    "bus",
    "control",
    "error_bus",
    "errors",
    "event",
    "ordered_store",
    "registry",
    "statemachine",
    "telemetry",
]