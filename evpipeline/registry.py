"""Thread-safe key-value registries, untyped and typed."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Generic, Iterator, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Entry(Generic[T]):
    """A key and its value."""

    key: str
    value: T


class InMemoryRegistry:
    """Thread-safe in-memory mapping of string keys to arbitrary values."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}
        self._lock = threading.RLock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._items.get(key, default)

    def lookup(self, key: str) -> Any:
        """Return the value for ``key``; raise KeyError if it is absent."""
        with self._lock:
            try:
                return self._items[key]
            except KeyError:
                raise KeyError(key) from None

    def list(self) -> list[Entry[Any]]:
        with self._lock:
            return [Entry(k, v) for k, v in self._items.items()]

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items = {}

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._items

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


class TypedRegistry(Generic[T]):
    """A view on a registry that only yields values of one type."""

    def __init__(self, registry: InMemoryRegistry, value_type: type[T]) -> None:
        self._registry = registry
        self.value_type = value_type

    def _matches(self, value: Any) -> bool:
        if isinstance(value, bool) and self.value_type in (int, float):
            return False
        return isinstance(value, self.value_type)

    def set(self, key: str, value: T) -> None:
        if not self._matches(value):
            raise TypeError(
                f"expected {self.value_type.__name__}, got {type(value).__name__}"
            )
        self._registry.set(key, value)

    def get(self, key: str, default: T | None = None) -> T | None:
        """Return the value, or ``default`` if absent or of another type."""
        value = self._registry.get(key, default)
        return value if self._matches(value) else default

    def lookup(self, key: str) -> T:
        """Return the value; KeyError if absent, TypeError if of another type."""
        value = self._registry.lookup(key)
        if not self._matches(value):
            raise TypeError(
                f"value for {key!r} is {type(value).__name__}, not {self.value_type.__name__}"
            )
        return value

    def list(self) -> list[Entry[T]]:
        return [e for e in self._registry.list() if self._matches(e.value)]

    def delete(self, key: str) -> None:
        self._registry.delete(key)

    def clear(self) -> None:
        self._registry.clear()

    def has(self, key: str) -> bool:
        return self._registry.has(key)

    def keys(self) -> list[str]:
        return self._registry.keys()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._registry.has(key)