"""
Event Log Tests

Validates the event log model:
1. Timestamps are normalized to millisecond UTC
2. Traces reject non-monotonic appends and writes after sealing
3. Flat records and CSV import group, sort and skip rows correctly
4. Serialized logs rebuild to the same cases and events
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import BASE_TIME, O2C_HAPPY_PATH, build_log, build_trace


class TestTimestamps:
    """Test timestamp parsing."""

    def test_iso_string_with_z_suffix(self):
        from process_mining.event_log import parse_timestamp
        parsed = parse_timestamp("2024-03-01T10:15:30.123456Z")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)
        assert parsed.microsecond == 123000

    def test_offset_converted_to_utc(self):
        from process_mining.event_log import parse_timestamp
        parsed = parse_timestamp("2024-03-01T12:00:00+02:00")
        assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_naive_values_taken_as_utc(self):
        from process_mining.event_log import parse_timestamp
        assert parse_timestamp("2024-03-01T10:00:00") == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert parse_timestamp(datetime(2024, 3, 1, 10, 0)).tzinfo is not None

    def test_epoch_milliseconds(self):
        from process_mining.event_log import parse_timestamp, to_epoch_ms
        parsed = parse_timestamp(1704096000000)
        assert parsed == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
        assert to_epoch_ms(parsed) == 1704096000000

    def test_invalid_values_rejected(self):
        from process_mining.event_log import parse_timestamp
        with pytest.raises(ValueError):
            parse_timestamp("not a date")
        with pytest.raises(ValueError):
            parse_timestamp(True)
        with pytest.raises(ValueError):
            parse_timestamp(None)

    def test_format_has_millisecond_z(self):
        from process_mining.event_log import format_timestamp
        assert format_timestamp(BASE_TIME) == "2024-01-01T08:00:00.000Z"


class TestEventAndTrace:
    """Test event validation and trace ordering."""

    def test_event_requires_activity(self):
        from process_mining.event_log import Event
        with pytest.raises(ValueError):
            Event("", BASE_TIME)

    def test_empty_resource_is_none(self):
        from process_mining.event_log import Event
        assert Event("A", BASE_TIME, resource="").resource is None

    def test_non_monotonic_append_rejected(self):
        from process_mining.event_log import Event, LogIntegrityError, Trace
        trace = Trace("C1")
        trace.append(Event("A", BASE_TIME + timedelta(hours=2)))
        with pytest.raises(LogIntegrityError) as exc_info:
            trace.append(Event("B", BASE_TIME))
        assert exc_info.value.case_id == "C1"

    def test_equal_timestamps_allowed(self):
        from process_mining.event_log import Event, Trace
        trace = Trace("C1", events=[Event("A", BASE_TIME), Event("B", BASE_TIME)])
        assert trace.activities == ["A", "B"]
        assert trace.duration_ms == 0

    def test_duration(self):
        trace = build_trace("C1", O2C_HAPPY_PATH)
        assert trace.duration_ms == 3 * 3600 * 1000
        assert trace.start_time == BASE_TIME


class TestEventLog:
    """Test log-level invariants and queries."""

    def test_duplicate_case_rejected(self):
        from process_mining.event_log import EventLog, LogIntegrityError
        log = EventLog()
        log.add_trace(build_trace("C1", ["A", "B"]))
        with pytest.raises(LogIntegrityError):
            log.add_trace(build_trace("C1", ["A"]))

    def test_sealed_log_rejects_writes(self):
        from process_mining.event_log import Event, LogIntegrityError
        log = build_log({"C1": ["A", "B"]})
        log.seal()
        log.seal()
        assert log.sealed
        with pytest.raises(LogIntegrityError):
            log.add_event("C2", Event("A", BASE_TIME))
        with pytest.raises(LogIntegrityError):
            log.get_trace("C1").append(Event("C", BASE_TIME + timedelta(days=1)))

    def test_summary(self):
        log = build_log({
            "C1": [("A", "alice"), ("B", "bob")],
            "C2": [("A", "alice"), ("C", None)],
        })
        summary = log.get_summary()
        assert summary["cases"] == 2
        assert summary["events"] == 4
        assert summary["activities"] == 3
        assert summary["resources"] == 2
        assert log.get_activity_set() == {"A", "B", "C"}
        assert log.get_resource_set() == {"alice", "bob"}

    def test_from_records_sorts_each_case(self):
        from process_mining.event_log import EventLog
        log = EventLog.from_records([
            {"caseId": "C1", "activity": "B", "timestamp": "2024-01-01T10:00:00Z", "amount": 12},
            {"caseId": "C1", "activity": "A", "timestamp": "2024-01-01T09:00:00Z"},
            {"caseId": "C2", "activity": "A", "timestamp": "2024-01-02T09:00:00Z", "resource": "bob"},
        ])
        assert log.get_trace("C1").activities == ["A", "B"]
        assert log.get_trace("C1").events[1].attributes == {"amount": 12}
        assert log.get_trace("C2").events[0].resource == "bob"

    def test_from_records_invalid_row_raises(self):
        from process_mining.event_log import EventLog
        with pytest.raises(ValueError, match="Record 2"):
            EventLog.from_records([
                {"caseId": "C1", "activity": "A", "timestamp": "2024-01-01T09:00:00Z"},
                {"caseId": "C1", "activity": "B", "timestamp": "garbage"},
            ])

    def test_from_records_skip_invalid(self):
        from process_mining.event_log import EventLog
        log = EventLog.from_records([
            {"caseId": "C1", "activity": "A", "timestamp": "2024-01-01T09:00:00Z"},
            {"caseId": "", "activity": "B", "timestamp": "2024-01-01T10:00:00Z"},
        ], skip_invalid=True)
        assert log.get_event_count() == 1


class TestSerialization:
    """Test dict, JSON and CSV forms."""

    def test_dict_round_trip(self):
        from process_mining.event_log import EventLog
        log = build_log({"C1": [("A", "alice"), ("B", "bob")], "C2": ["A"]})
        rebuilt = EventLog.from_dict(json.loads(log.to_json()))
        assert rebuilt.get_case_count() == 2
        assert rebuilt.get_trace("C1").activities == ["A", "B"]
        assert rebuilt.get_trace("C1").events[0].timestamp == log.get_trace("C1").events[0].timestamp
        assert rebuilt.get_trace("C1").events[1].resource == "bob"

    def test_csv_round_trip(self):
        from process_mining.event_log import EventLog
        log = build_log({"C1": [("A", "alice"), ("B", "bob")], "C2": ["A", "C"]})
        rebuilt = EventLog.from_csv(log.to_csv())
        assert rebuilt.get_case_count() == 2
        assert rebuilt.get_event_count() == 4
        assert rebuilt.get_trace("C2").activities == ["A", "C"]

    def test_csv_missing_column(self):
        from process_mining.event_log import EventLog
        with pytest.raises(ValueError, match="timestamp"):
            EventLog.from_csv("caseId,activity\nC1,A\n")

    def test_csv_skips_bad_rows(self):
        from process_mining.event_log import EventLog
        text = (
            "caseId,activity,timestamp,resource\n"
            "C1,A,2024-01-01T09:00:00Z,alice\n"
            "C1,B,yesterday,bob\n"
            "C1,C,2024-01-01T11:00:00Z,\n"
        )
        log = EventLog.from_csv(text)
        assert log.get_trace("C1").activities == ["A", "C"]
        assert log.get_trace("C1").events[1].resource is None

    def test_csv_file_path(self, tmp_path):
        from pathlib import Path
        from process_mining.event_log import EventLog
        path = tmp_path / "orders.csv"
        path.write_text(build_log({"C1": ["A", "B"]}).to_csv(), encoding="utf-8")
        log = EventLog.from_csv(Path(path))
        assert log.name == "orders"
        assert log.get_event_count() == 2
