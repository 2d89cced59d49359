from datetime import datetime, timedelta, timezone

from evpipeline.event import Event
from evpipeline.ordered_store import ChordWindow, OrderedEventStore

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)
MS = timedelta(milliseconds=1)


def _evt(event_id, ts, type_="test", source="test"):
    return Event(id=event_id, type=type_, source=source, timestamp=ts)


def _filled(count, step, base=BASE):
    store = OrderedEventStore()
    for i in range(count):
        store.append(_evt(f"evt-{i}", base + i * step))
    return store


def test_append_in_order():
    store = _filled(10, MS)
    assert len(store) == 10
    events = store.get_all()
    assert all(a.timestamp <= b.timestamp for a, b in zip(events, events[1:]))


def test_append_out_of_order():
    store = OrderedEventStore()
    for ts in [0, 5, 2, 8, 1, 9, 3, 7, 4, 6]:
        store.append(_evt(f"evt-{ts}", BASE + ts * MS))
    assert [e.id for e in store.get_all()] == [f"evt-{i}" for i in range(10)]


def test_equal_timestamps_keep_arrival_order():
    store = OrderedEventStore()
    store.append(_evt("a", BASE + 5 * MS))
    store.append(_evt("b", BASE + 5 * MS))
    store.append(_evt("c", BASE + 1 * MS))
    store.append(_evt("d", BASE + 5 * MS))
    assert [e.id for e in store.get_all()] == ["c", "a", "b", "d"]


def test_get_range():
    store = _filled(10, MS)
    events = store.get_range(BASE + 2 * MS, BASE + 6 * MS)
    assert [e.id for e in events] == ["evt-2", "evt-3", "evt-4", "evt-5"]


def test_get_last():
    store = _filled(10, MS, base=datetime.now(timezone.utc))
    assert [e.id for e in store.get_last(3)] == ["evt-7", "evt-8", "evt-9"]


def test_trim():
    base = datetime.now(timezone.utc) - 100 * MS
    store = _filled(10, 10 * MS, base=base)
    removed = store.trim(50 * MS)
    assert removed > 0
    assert len(store) > 0
    assert removed + len(store) == 10
    cutoff = datetime.now(timezone.utc) - 50 * MS
    assert all(e.timestamp >= cutoff for e in store.get_all())


def test_detect_chords_single_chord():
    base = datetime.now(timezone.utc)
    store = OrderedEventStore()
    store.append(_evt("key-h", base, "keyboard.press"))
    store.append(_evt("key-e", base + 20 * MS, "keyboard.press"))
    store.append(_evt("key-l", base + 45 * MS, "keyboard.press"))
    store.append(_evt("key-o", base + 200 * MS, "keyboard.press"))

    chords = store.detect_chords(100 * MS, 3)
    assert len(chords) == 1
    assert [e.id for e in chords[0].events] == ["key-h", "key-e", "key-l"]
    assert chords[0].start == base
    assert chords[0].end == base + 100 * MS


def test_detect_chords_fast_typing():
    base = datetime.now(timezone.utc)
    store = OrderedEventStore()
    for key, offset in [("h", 0), ("e", 20), ("l", 150), ("l", 250), ("o", 350)]:
        store.append(_evt(f"key-{key}", base + offset * MS, "keyboard.press", "typing-test"))

    chords = store.detect_chords(50 * MS, 2)
    assert len(chords) >= 1
    assert chords[0].events[0].id == "key-h"
    assert chords[0].events[1].id == "key-e"


def test_get_intervals():
    base = datetime.now(timezone.utc)
    intervals = [10 * MS, 20 * MS, 15 * MS, 50 * MS]
    store = OrderedEventStore()
    current = base
    store.append(_evt("evt-0", current))
    for i, interval in enumerate(intervals):
        current += interval
        store.append(_evt(f"evt-{i + 1}", current))
    assert store.get_intervals() == intervals


def test_sub_millisecond_precision():
    store = _filled(10, timedelta(microseconds=100), base=datetime.now(timezone.utc))
    intervals = store.get_intervals()
    assert len(intervals) == 9
    assert all(
        timedelta(microseconds=50) <= iv <= timedelta(microseconds=150) for iv in intervals
    )


def test_chord_detection_20ms_target():
    base = datetime.now(timezone.utc)
    store = OrderedEventStore()
    store.append(_evt("key-1", base, "keyboard.press"))
    store.append(_evt("key-2", base + 8 * MS, "keyboard.press"))
    store.append(_evt("key-3", base + 18 * MS, "keyboard.press"))

    chords = store.detect_chords(20 * MS, 3)
    assert len(chords) == 1
    assert len(chords[0].events) == 3
    assert chords[0].events[2].timestamp - chords[0].events[0].timestamp == 18 * MS


def test_clear():
    store = OrderedEventStore()
    for i in range(5):
        store.append(_evt(f"evt-{i}", datetime.now(timezone.utc)))
    assert len(store) == 5
    store.clear()
    assert len(store) == 0


def test_get_since():
    store = _filled(10, 10 * MS)
    cutoff = BASE + 50 * MS
    events = store.get_since(cutoff)
    assert [e.id for e in events] == ["evt-5", "evt-6", "evt-7", "evt-8", "evt-9"]
    assert all(e.timestamp >= cutoff for e in events)


def test_get_last_edge_cases():
    store = OrderedEventStore()
    assert store.get_last(5) == []
    base = datetime.now(timezone.utc)
    for i in range(3):
        store.append(_evt(f"evt-{i}", base + i * MS))
    assert len(store.get_last(10)) == 3
    assert store.get_last(0) == []


def test_get_range_edge_cases():
    store = _filled(10, 10 * MS)
    assert store.get_range(BASE - 100 * MS, BASE - 50 * MS) == []
    assert store.get_range(BASE + 200 * MS, BASE + 300 * MS) == []
    assert store.get_range(BASE + 50 * MS, BASE + 20 * MS) == []
    assert len(store.get_range(BASE + 20 * MS, BASE + 40 * MS)) == 2
    end = BASE + 40 * MS + timedelta(microseconds=1)
    assert [e.id for e in store.get_range(BASE + 20 * MS, end)] == ["evt-2", "evt-3", "evt-4"]


def test_trim_edge_cases():
    store = OrderedEventStore()
    assert store.trim(100 * MS) == 0
    base = datetime.now(timezone.utc) - timedelta(seconds=1)
    for i in range(5):
        store.append(_evt(f"evt-{i}", base + i * 100 * MS))
    assert store.trim(timedelta(0)) == 5
    assert len(store) == 0


def test_detect_chords_edge_cases():
    store = OrderedEventStore()
    assert store.detect_chords(50 * MS, 2) == []

    store.append(_evt("evt-0", datetime.now(timezone.utc)))
    assert store.detect_chords(50 * MS, 2) == []

    store.clear()
    base = datetime.now(timezone.utc)
    for i in range(3):
        store.append(_evt(f"evt-{i}", base + i * 10 * MS))
    chords = store.detect_chords(50 * MS, 0)
    assert len(chords) == 3
    assert all(isinstance(c, ChordWindow) for c in chords)
    assert [len(c.events) for c in chords] == [3, 2, 1]


def test_get_intervals_edge_cases():
    store = OrderedEventStore()
    assert store.get_intervals() == []
    now = datetime.now(timezone.utc)
    store.append(_evt("evt-0", now))
    assert store.get_intervals() == []
    store.append(_evt("evt-1", now + 10 * MS))
    assert store.get_intervals() == [10 * MS]


def test_returned_lists_are_copies():
    store = _filled(3, MS)
    events = store.get_all()
    events.clear()
    assert len(store) == 3