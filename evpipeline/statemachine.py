"""A finite state machine with guards, actions and enter/exit hooks."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

State = str
EventName = str

GuardFunc = Callable[[State, State, EventName], bool]
ActionFunc = Callable[[State, State, EventName], None]
HookFunc = Callable[[State], None]
TransitionHook = Callable[[State, State, EventName], None]


class TransitionError(RuntimeError):
    """Raised when a transition cannot be found, is refused, or fails."""


@dataclass
class StateConfig:
    """Hooks run when a state is entered or left."""

    name: State
    on_enter: Optional[HookFunc] = None
    on_exit: Optional[HookFunc] = None


@dataclass
class Transition:
    """Moves the machine from one state to another on an event.

    The action runs after the source state's on_exit and before the target
    state's on_enter; raising from it aborts the transition.
    """

    from_state: State
    to_state: State
    event: EventName
    guard: Optional[GuardFunc] = None
    action: Optional[ActionFunc] = None


class Machine:
    """A thread-safe finite state machine."""

    def __init__(self, initial_state: State) -> None:
        self._current = initial_state
        self._states: dict[State, StateConfig] = {}
        self._transitions: dict[State, dict[EventName, Transition]] = {}
        self._hooks: list[TransitionHook] = []
        self._lock = threading.RLock()

    @property
    def current(self) -> State:
        with self._lock:
            return self._current

    def add_state(self, config: StateConfig) -> None:
        with self._lock:
            self._states[config.name] = config

    def add_transition(self, transition: Transition) -> None:
        """Register a transition; ValueError if one exists for that state and event."""
        with self._lock:
            by_event = self._transitions.setdefault(transition.from_state, {})
            if transition.event in by_event:
                raise ValueError(
                    f"transition from {transition.from_state} on event "
                    f"{transition.event} already exists"
                )
            by_event[transition.event] = transition

    def trigger(self, event: EventName) -> None:
        """Fire ``event`` from the current state.

        Raises TransitionError when no transition applies, the guard refuses
        it, or a hook or the action raises (the original error is its cause).
        If on_enter fails, the state has already changed.
        """
        with self._lock:
            current = self._current
            by_event = self._transitions.get(current)
            if by_event is None:
                raise TransitionError(f"no transitions from state {current}")
            transition = by_event.get(event)
            if transition is None:
                raise TransitionError(f"no transition from {current} on event {event}")

        if transition.guard is not None and not transition.guard(
            transition.from_state, transition.to_state, event
        ):
            raise TransitionError(
                f"guard rejected transition from {transition.from_state} "
                f"to {transition.to_state} on event {event}"
            )
        self._execute(transition)

    def _execute(self, transition: Transition) -> None:
        source, target = transition.from_state, transition.to_state
        with self._lock:
            from_config = self._states.get(source)
            to_config = self._states.get(target)

        if from_config is not None and from_config.on_exit is not None:
            try:
                from_config.on_exit(source)
            except Exception as exc:
                raise TransitionError(f"on_exit failed for state {source}: {exc}") from exc

        if transition.action is not None:
            try:
                transition.action(source, target, transition.event)
            except Exception as exc:
                raise TransitionError(
                    f"action failed for transition {source} -> {target}: {exc}"
                ) from exc

        with self._lock:
            self._current = target

        if to_config is not None and to_config.on_enter is not None:
            try:
                to_config.on_enter(target)
            except Exception as exc:
                raise TransitionError(f"on_enter failed for state {target}: {exc}") from exc

        with self._lock:
            hooks = list(self._hooks)
        for hook in hooks:
            hook(source, target, transition.event)

    def can(self, event: EventName) -> bool:
        """True if ``event`` has a transition from the current state."""
        with self._lock:
            return event in self._transitions.get(self._current, {})

    def on_transition(self, hook: TransitionHook) -> None:
        """Register a hook called after every completed transition."""
        with self._lock:
            self._hooks.append(hook)

    def states(self) -> list[State]:
        """All states registered with add_state."""
        with self._lock:
            return list(self._states)

    def available_events(self) -> list[EventName]:
        """Events that have a transition from the current state."""
        with self._lock:
            return list(self._transitions.get(self._current, {}))