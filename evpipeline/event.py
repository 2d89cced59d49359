"""Event envelope and JSON payload codec."""

import base64
import collections.abc
import json
import types
import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, Union, get_args, get_origin


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EventCodec(Protocol):
    """Serializes and deserializes event payloads."""

    def marshal(self, value: Any) -> bytes: ...

    def unmarshal(self, data: Union[bytes, str], into: Any = None) -> Any: ...


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (str, bytes, bytearray, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _encode_default(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        out: dict = {}
        for f in fields(value):
            v = getattr(value, f.name)
            if f.metadata.get("omitempty") and _is_empty(v):
                continue
            out[f.metadata.get("json", f.name)] = v
        return out
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def _parse_datetime(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


# Names understood in annotations that were written as text; anything else
# decodes as the raw JSON value.
_ANNOTATION_NAMES: dict = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "datetime": datetime,
    "datetime.datetime": datetime,
    "Any": Any,
    "typing.Any": Any,
    "object": object,
    "None": type(None),
    "NoneType": type(None),
    "dict": dict,
    "Dict": dict,
    "typing.Dict": dict,
    "Mapping": dict,
    "list": list,
    "List": list,
    "typing.List": list,
    "Sequence": list,
    "tuple": tuple,
    "Tuple": tuple,
    "typing.Tuple": tuple,
    "set": set,
    "Set": set,
    "frozenset": frozenset,
}


def _split_top(text: str, sep: str) -> list:
    parts = []
    depth = 0
    current = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts]


def _resolve_annotation(text: str) -> Any:
    text = text.strip().strip("'\"")
    alternatives = _split_top(text, "|")
    if len(alternatives) > 1:
        return Union[tuple(_resolve_annotation(a) for a in alternatives)]
    if text == "...":
        return Ellipsis
    if text.endswith("]") and "[" in text:
        head, _, inner = text.partition("[")
        head = head.strip()
        args = tuple(_resolve_annotation(a) for a in _split_top(inner[:-1], ","))
        if head in ("Optional", "typing.Optional"):
            return Optional[args[0]]
        if head in ("Union", "typing.Union"):
            return Union[args]
        base = _ANNOTATION_NAMES.get(head)
        if base in (dict, list, tuple, set, frozenset):
            return base[args] if len(args) > 1 else base[args[0]]
        return Any
    return _ANNOTATION_NAMES.get(text, Any)


def _field_hint(hint: Any) -> Any:
    if isinstance(hint, str):
        return _resolve_annotation(hint)
    return hint


def _decode(value: Any, tp: Any) -> Any:
    if tp is Any or tp is object:
        return value

    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = get_args(tp)
        if value is None and type(None) in args:
            return None
        for arg in args:
            if arg is type(None):
                continue
            try:
                return _decode(value, arg)
            except (TypeError, ValueError):
                continue
        raise TypeError(f"cannot decode {value!r} as {tp}")

    if origin in (list, collections.abc.Sequence, collections.abc.MutableSequence):
        if not isinstance(value, list):
            raise TypeError(f"expected a JSON array, got {type(value).__name__}")
        args = get_args(tp)
        return [_decode(v, args[0]) if args else v for v in value]
    if origin is tuple:
        if not isinstance(value, list):
            raise TypeError(f"expected a JSON array, got {type(value).__name__}")
        args = get_args(tp)
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_decode(v, args[0]) for v in value)
        if args:
            return tuple(_decode(v, a) for v, a in zip(value, args))
        return tuple(value)
    if origin in (set, frozenset):
        if not isinstance(value, list):
            raise TypeError(f"expected a JSON array, got {type(value).__name__}")
        args = get_args(tp)
        return origin(_decode(v, args[0]) if args else v for v in value)
    if origin in (dict, collections.abc.Mapping, collections.abc.MutableMapping):
        if not isinstance(value, dict):
            raise TypeError(f"expected a JSON object, got {type(value).__name__}")
        args = get_args(tp)
        value_type = args[1] if len(args) == 2 else Any
        return {k: _decode(v, value_type) for k, v in value.items()}

    if tp is datetime:
        if not isinstance(value, str):
            raise TypeError("expected a timestamp string")
        return _parse_datetime(value)
    if tp is bytes:
        if not isinstance(value, str):
            raise TypeError("expected a base64 string")
        return base64.b64decode(value)
    if tp is bool:
        if not isinstance(value, bool):
            raise TypeError(f"expected a boolean, got {type(value).__name__}")
        return value
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"expected an integer, got {type(value).__name__}")
        return value
    if tp is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected a number, got {type(value).__name__}")
        return float(value)
    if tp is str:
        if not isinstance(value, str):
            raise TypeError(f"expected a string, got {type(value).__name__}")
        return value
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    if isinstance(tp, type) and is_dataclass(tp):
        if not isinstance(value, dict):
            raise TypeError(f"expected a JSON object for {tp.__name__}")
        kwargs: dict = {}
        for f in fields(tp):
            if not f.init:
                continue
            key = f.metadata.get("json", f.name)
            if key not in value:
                continue
            raw = value[key]
            hint = _field_hint(f.type)
            if raw is None and not _accepts_none(hint):
                continue
            kwargs[f.name] = _decode(raw, hint)
        return tp(**kwargs)
    if isinstance(tp, type):
        if not isinstance(value, tp):
            raise TypeError(f"expected {tp.__name__}, got {type(value).__name__}")
        return value
    return value


def _accepts_none(tp: Any) -> bool:
    if tp is Any or tp is type(None):
        return True
    origin = get_origin(tp)
    return (origin is Union or origin is types.UnionType) and type(None) in get_args(tp)


class JSONCodec:
    """Encodes payloads as compact JSON; dataclasses become objects."""

    def marshal(self, value: Any) -> bytes:
        text = json.dumps(
            value,
            default=_encode_default,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
        return text.encode("utf-8")

    def unmarshal(self, data: Union[bytes, str], into: Any = None) -> Any:
        """Decode JSON; with ``into`` given, convert the result to that type."""
        obj = json.loads(data)
        if into is None:
            return obj
        return _decode(obj, into)


@dataclass
class Event:
    """A payload-agnostic message envelope."""

    id: str = ""
    type: str = ""
    source: str = ""
    timestamp: datetime = field(default_factory=_now)
    data: bytes = field(default=b"", metadata={"omitempty": True})
    metadata: dict[str, str] = field(default_factory=dict, metadata={"omitempty": True})
    correlation_id: str = field(default="", metadata={"omitempty": True})
    causation_id: str = field(default="", metadata={"omitempty": True})

    def with_metadata(self, key: str, value: str) -> "Event":
        if self.metadata is None:
            self.metadata = {}
        self.metadata[key] = value
        return self

    def with_correlation_id(self, correlation_id: str) -> "Event":
        self.correlation_id = correlation_id
        return self

    def with_causation_id(self, causation_id: str) -> "Event":
        self.causation_id = causation_id
        return self

    def set_source(self, source: str) -> None:
        self.source = source

    def decode_payload(self, codec: Optional[EventCodec] = None, into: Any = None) -> Any:
        """Decode the payload; an empty payload decodes to None."""
        if not self.data:
            return None
        return (codec or JSONCodec()).unmarshal(self.data, into)

    def to_json(self) -> bytes:
        return JSONCodec().marshal(self)

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "Event":
        return JSONCodec().unmarshal(data, cls)


def new_event(
    event_type: str,
    source: str,
    payload: Any,
    codec: Optional[EventCodec] = None,
) -> Event:
    """Create an event with a fresh ID, the current time and an encoded payload."""
    data = (codec or JSONCodec()).marshal(payload)
    return Event(
        id=str(uuid.uuid4()),
        type=event_type,
        source=source,
        timestamp=_now(),
        data=data,
        metadata={},
    )