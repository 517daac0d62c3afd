import json
from datetime import datetime, timezone

from wabridge.core.events import Event, EventType
from wabridge.infra.journal import EventJournal


def _ts(hour: int, minute: int = 0) -> str:
    return f"2026-02-13T{hour:02d}:{minute:02d}:00.000Z"


def _event(n: int, timestamp: str) -> Event:
    return Event(event_type=EventType.MESSAGES_UPSERT, payload={"n": n}, timestamp=timestamp)


def test_append_and_read_back_in_order(tmp_path) -> None:
    journal = EventJournal(tmp_path / "events.log")
    for n in range(5):
        assert journal.append(_event(n, _ts(10, n))) is True

    events = journal.read_all()
    assert [event.payload["n"] for event in events] == [0, 1, 2, 3, 4]
    assert all(event.event_type is EventType.MESSAGES_UPSERT for event in events)


def test_query_is_inclusive_and_excludes_outside_range(tmp_path) -> None:
    journal = EventJournal(tmp_path / "events.log")
    journal.append(_event(1, _ts(8)))
    journal.append(_event(2, _ts(9)))
    journal.append(_event(3, _ts(10)))
    journal.append(_event(4, _ts(11)))
    journal.append(_event(5, _ts(12)))

    start = datetime(2026, 2, 13, 9, 0, tzinfo=timezone.utc)
    end = datetime(2026, 2, 13, 11, 0, tzinfo=timezone.utc)
    events = journal.query(start, end)
    assert [event.payload["n"] for event in events] == [2, 3, 4]


def test_query_preserves_storage_order_not_timestamp_order(tmp_path) -> None:
    journal = EventJournal(tmp_path / "events.log")
    journal.append(_event(1, _ts(11)))
    journal.append(_event(2, _ts(9)))

    events = journal.query(
        datetime(2026, 2, 13, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 2, 13, 23, 59, tzinfo=timezone.utc),
    )
    assert [event.payload["n"] for event in events] == [1, 2]


def test_corrupt_lines_are_skipped(tmp_path) -> None:
    path = tmp_path / "events.log"
    journal = EventJournal(path)
    journal.append(_event(1, _ts(10, 1)))
    with path.open("a", encoding="utf-8") as fh:
        fh.write("{not json\n")
        fh.write(json.dumps({"timestamp": "yesterday", "eventType": "send.text", "payload": {}}) + "\n")
        fh.write(json.dumps({"timestamp": _ts(10, 2), "eventType": "unknown.type", "payload": {}}) + "\n")
        fh.write("[1, 2, 3]\n")
    journal.append(_event(2, _ts(10, 3)))
    journal.append(_event(3, _ts(10, 4)))

    events = journal.query(
        datetime(2026, 2, 13, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 2, 14, 0, 0, tzinfo=timezone.utc),
    )
    assert [event.payload["n"] for event in events] == [1, 2, 3]


def test_missing_file_yields_empty_result(tmp_path) -> None:
    journal = EventJournal(tmp_path / "nope" / "events.log")
    assert journal.query(
        datetime(2026, 1, 1, tzinfo=timezone.utc),
        datetime(2026, 12, 31, tzinfo=timezone.utc),
    ) == []


def test_inverted_range_returns_nothing(tmp_path) -> None:
    journal = EventJournal(tmp_path / "events.log")
    journal.append(_event(1, _ts(10)))
    assert journal.query(
        datetime(2026, 2, 13, 12, 0, tzinfo=timezone.utc),
        datetime(2026, 2, 13, 8, 0, tzinfo=timezone.utc),
    ) == []


def test_naive_bounds_are_treated_as_utc(tmp_path) -> None:
    journal = EventJournal(tmp_path / "events.log")
    journal.append(_event(1, _ts(10)))
    events = journal.query(datetime(2026, 2, 13, 10, 0), datetime(2026, 2, 13, 10, 0))
    assert len(events) == 1


def test_append_failure_is_swallowed(tmp_path) -> None:
    target = tmp_path / "events.log"
    target.mkdir()
    journal = EventJournal(target)
    assert journal.append(_event(1, _ts(10))) is False


def test_bytes_payload_is_written_as_base64(tmp_path) -> None:
    path = tmp_path / "events.log"
    journal = EventJournal(path)
    journal.append(Event.create(EventType.MESSAGES_UPSERT, {"media": b"\x00\x01"}))

    line = path.read_text(encoding="utf-8").strip()
    record = json.loads(line)
    assert record["eventType"] == "messages.upsert"
    assert record["payload"]["media"] == "AAE="
    assert set(record) == {"timestamp", "eventType", "payload"}


def test_invalid_utf8_row_is_skipped(tmp_path) -> None:
    path = tmp_path / "events.log"
    journal = EventJournal(path)
    journal.append(_event(1, _ts(10, 1)))
    with path.open("ab") as fh:
        fh.write(b"\xff\xfe garbage\n")
    journal.append(_event(2, _ts(10, 2)))

    events = journal.query(
        datetime(2026, 2, 13, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 2, 14, 0, 0, tzinfo=timezone.utc),
    )
    assert [event.payload["n"] for event in events] == [1, 2]
