import base64
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from evpipeline.event import Event, JSONCodec, new_event


@dataclass
class Payload:
    message: str = ""
    count: int = 0


@dataclass
class Stamped:
    when: datetime = field(default_factory=lambda: datetime(2000, 1, 1, tzinfo=timezone.utc))
    extra: Optional[dict[str, Any]] = field(default=None, metadata={"omitempty": True})
    flag: Optional[bool] = None


def test_new_event():
    evt = new_event("test.event", "test-source", Payload("hello", 42), JSONCodec())
    assert evt.id != ""
    assert evt.type == "test.event"
    assert evt.source == "test-source"
    assert datetime.now(timezone.utc) - evt.timestamp < timedelta(seconds=1)
    assert len(evt.data) > 0
    assert evt.metadata == {}


def test_new_event_ids_unique():
    a = new_event("t", "s", Payload())
    b = new_event("t", "s", Payload())
    assert a.id != b.id
    assert len(a.id) == 36


def test_decode_payload():
    codec = JSONCodec()
    original = Payload("test message", 123)
    evt = new_event("test.event", "test-source", original, codec)
    decoded = evt.decode_payload(codec, Payload)
    assert decoded == original


def test_decode_payload_empty_data():
    evt = Event(id="test-id", type="test.event", source="test-source", data=b"")
    assert evt.decode_payload(JSONCodec(), Payload) is None


def test_with_metadata():
    evt = Event(id="test-id", type="test.event", source="test-source", metadata=None)
    evt.with_metadata("key1", "value1").with_metadata("key2", "value2")
    assert evt.metadata == {"key1": "value1", "key2": "value2"}


def test_with_correlation_id():
    evt = Event(id="test-id", type="test.event", source="test-source")
    evt.with_correlation_id("correlation-123")
    assert evt.correlation_id == "correlation-123"


def test_with_causation_id():
    evt = Event(id="test-id", type="test.event", source="test-source")
    evt.with_causation_id("cause-456")
    assert evt.causation_id == "cause-456"


def test_set_source():
    evt = Event(id="x", type="t", source="a")
    evt.set_source("manual-override")
    assert evt.source == "manual-override"


def test_chained_builders():
    evt = new_event("test.event", "test-source", Payload("chained", 7), JSONCodec())
    result = (
        evt.with_metadata("env", "test")
        .with_metadata("version", "1.0")
        .with_correlation_id("corr-123")
        .with_causation_id("cause-456")
    )
    assert result is evt
    assert evt.metadata["env"] == "test"
    assert evt.metadata["version"] == "1.0"
    assert evt.correlation_id == "corr-123"
    assert evt.causation_id == "cause-456"


def test_codec_marshal():
    data = JSONCodec().marshal(Payload("marshal test", 99))
    assert json.loads(data) == {"message": "marshal test", "count": 99}


def test_codec_unmarshal():
    payload = JSONCodec().unmarshal(b'{"message":"unmarshal test","count":77}', Payload)
    assert payload.message == "unmarshal test"
    assert payload.count == 77


def test_codec_unmarshal_without_type_returns_plain_json():
    assert JSONCodec().unmarshal('{"a":[1,2]}') == {"a": [1, 2]}


def test_codec_round_trip():
    codec = JSONCodec()
    original = Payload("roundtrip", 42)
    assert codec.unmarshal(codec.marshal(original), Payload) == original


def test_codec_round_trip_datetime_and_optional():
    codec = JSONCodec()
    when = datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)
    original = Stamped(when=when, extra={"pressure": 0.87}, flag=False)
    decoded = codec.unmarshal(codec.marshal(original), Stamped)
    assert decoded == original


def test_codec_omitempty_skips_empty_field():
    data = json.loads(JSONCodec().marshal(Stamped()))
    assert "extra" not in data
    assert data["flag"] is None


def test_codec_unmarshal_type_mismatch_raises():
    with pytest.raises(TypeError):
        JSONCodec().unmarshal(b'{"message":"x","count":"many"}', Payload)


def test_codec_unmarshal_invalid_json_raises():
    with pytest.raises(ValueError):
        JSONCodec().unmarshal(b"{not json", Payload)


def test_event_json_serialization():
    codec = JSONCodec()
    payload = Payload("serialize", 100)
    evt = new_event("test.event", "test-source", payload, codec)
    evt.with_metadata("key", "value").with_correlation_id("corr-id").with_causation_id("cause-id")

    decoded = Event.from_json(evt.to_json())
    assert decoded.id == evt.id
    assert decoded.type == evt.type
    assert decoded.source == evt.source
    assert decoded.timestamp == evt.timestamp
    assert decoded.correlation_id == evt.correlation_id
    assert decoded.causation_id == evt.causation_id
    assert decoded.metadata["key"] == "value"
    assert decoded.decode_payload(codec, Payload) == payload


def test_event_json_field_names():
    evt = Event(id="1", type="t", source="s", data=b"{}")
    wire = json.loads(evt.to_json())
    assert wire["id"] == "1"
    assert wire["type"] == "t"
    assert wire["data"] == base64.b64encode(b"{}").decode()
    assert "metadata" not in wire
    assert "correlation_id" not in wire
    assert "causation_id" not in wire


def test_new_event_marshal_error():
    with pytest.raises(TypeError):
        new_event("test.event", "test-source", object(), JSONCodec())