"""Event log model: events, traces (cases) and the log that owns them.

Timestamps are parsed once at ingest into timezone-aware UTC datetimes
truncated to millisecond resolution. Within a trace, events must arrive in
non-decreasing timestamp order; the log is sealed before analysis and
rejects further writes.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from core.observability.logging import get_logger


logger = get_logger(__name__)

TimestampLike = Union[datetime, str, int, float]

CSV_STANDARD_COLUMNS = ("caseId", "activity", "timestamp", "resource", "lifecycle")


class LogIntegrityError(Exception):
    """Raised when an append would break log invariants.

    Non-monotonic timestamps, duplicate case ids and writes to a sealed log
    are programming faults, not recoverable conditions.
    """

    def __init__(self, message: str, case_id: Optional[str] = None):
        super().__init__(message)
        self.case_id = case_id


# =============================================================================
# Timestamps
# =============================================================================

def _truncate_ms(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def parse_timestamp(value: TimestampLike) -> datetime:
    """Normalize a datetime, ISO-8601 string or epoch milliseconds to UTC.

    Naive datetimes and offset-less strings are taken as UTC.

    Raises:
        ValueError: If the value cannot be interpreted as an instant
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp value: {value!r}")
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Unparseable timestamp: {value!r}") from None
    else:
        raise ValueError(f"Invalid timestamp value: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return _truncate_ms(parsed)


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


# =============================================================================
# Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """One activity occurrence. Immutable once created."""
    activity: str
    timestamp: datetime
    resource: Optional[str] = None
    lifecycle: str = "complete"
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not self.activity or not isinstance(self.activity, str):
            raise ValueError("Event requires a non-empty activity string")
        if self.timestamp is None:
            raise ValueError("Event requires a timestamp")
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))
        object.__setattr__(self, "resource", self.resource or None)
        object.__setattr__(self, "lifecycle", self.lifecycle or "complete")
        object.__setattr__(self, "attributes", dict(self.attributes or {}))

    @property
    def timestamp_ms(self) -> int:
        return to_epoch_ms(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "activity": self.activity,
            "timestamp": format_timestamp(self.timestamp),
            "lifecycle": self.lifecycle,
        }
        if self.resource:
            result["resource"] = self.resource
        if self.attributes:
            result["attributes"] = dict(self.attributes)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            activity=data.get("activity"),
            timestamp=data.get("timestamp"),
            resource=data.get("resource"),
            lifecycle=data.get("lifecycle") or "complete",
            attributes=data.get("attributes") or {},
        )


# =============================================================================
# Trace
# =============================================================================

class Trace:
    """Ordered events of one case. Append-only until sealed."""

    def __init__(self, case_id: str, attributes: Optional[Dict[str, Any]] = None,
                 events: Optional[Iterable[Event]] = None):
        if not case_id or not isinstance(case_id, str):
            raise ValueError("Trace requires a non-empty case_id string")
        self.case_id = case_id
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self._events: List[Event] = []
        self._sealed = False
        for event in events or []:
            self.append(event)

    def append(self, event: Event) -> None:
        """Append an event at or after the current last timestamp.

        Raises:
            LogIntegrityError: Sealed trace, or timestamp earlier than the last event
        """
        if self._sealed:
            raise LogIntegrityError(f"Trace {self.case_id} is sealed", self.case_id)
        if not isinstance(event, Event):
            raise TypeError("Trace.append requires an Event")
        if self._events and event.timestamp < self._events[-1].timestamp:
            raise LogIntegrityError(
                f"Non-monotonic timestamp in case {self.case_id}: "
                f"{format_timestamp(event.timestamp)} ({event.activity}) is before "
                f"{format_timestamp(self._events[-1].timestamp)} ({self._events[-1].activity})",
                self.case_id,
            )
        self._events.append(event)

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def events(self) -> Tuple[Event, ...]:
        return tuple(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    @property
    def activities(self) -> List[str]:
        return [e.activity for e in self._events]

    @property
    def start_time(self) -> Optional[datetime]:
        return self._events[0].timestamp if self._events else None

    @property
    def end_time(self) -> Optional[datetime]:
        return self._events[-1].timestamp if self._events else None

    @property
    def duration_ms(self) -> int:
        if len(self._events) < 2:
            return 0
        return self._events[-1].timestamp_ms - self._events[0].timestamp_ms

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "caseId": self.case_id,
            "events": [e.to_dict() for e in self._events],
        }
        if self.attributes:
            result["attributes"] = dict(self.attributes)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trace":
        return cls(
            data.get("caseId"),
            attributes=data.get("attributes"),
            events=[Event.from_dict(e) for e in data.get("events", [])],
        )


# =============================================================================
# Event Log
# =============================================================================

class EventLog:
    """A set of traces keyed by unique case id.

    Usage:
        log = EventLog("O2C 2024")
        log.add_event("SO-1", Event("Create Sales Order", "2024-01-01T08:00:00Z", resource="alice"))
        log.add_event("SO-1", Event("Create Delivery", "2024-01-02T08:00:00Z", resource="bob"))
    """

    def __init__(self, name: str = "EventLog", attributes: Optional[Dict[str, Any]] = None):
        self.name = name
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self._traces: Dict[str, Trace] = {}
        self._sealed = False

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._sealed:
            raise LogIntegrityError(f"Event log '{self.name}' is sealed for analysis")

    def add_trace(self, trace: Trace) -> Trace:
        """Add a complete trace.

        Raises:
            LogIntegrityError: Sealed log, or case id already present
        """
        self._check_open()
        if trace.case_id in self._traces:
            raise LogIntegrityError(f"Duplicate case id: {trace.case_id}", trace.case_id)
        self._traces[trace.case_id] = trace
        return trace

    def add_event(self, case_id: str, event: Event) -> Trace:
        """Append an event to a case, creating the case if needed."""
        self._check_open()
        trace = self._traces.get(case_id)
        if trace is None:
            trace = Trace(case_id)
            self._traces[case_id] = trace
        trace.append(event)
        return trace

    def seal(self) -> None:
        """Make the log and all its traces read-only. Idempotent."""
        if self._sealed:
            return
        self._sealed = True
        for trace in self._traces.values():
            trace.seal()

    @property
    def sealed(self) -> bool:
        return self._sealed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def __iter__(self) -> Iterator[Trace]:
        return iter(self._traces.values())

    def __len__(self) -> int:
        return len(self._traces)

    @property
    def traces(self) -> List[Trace]:
        return list(self._traces.values())

    def get_trace(self, case_id: str) -> Optional[Trace]:
        return self._traces.get(case_id)

    def get_case_count(self) -> int:
        return len(self._traces)

    def get_event_count(self) -> int:
        return sum(len(t) for t in self._traces.values())

    def get_activity_set(self) -> Set[str]:
        return {e.activity for t in self._traces.values() for e in t}

    def get_resource_set(self) -> Set[str]:
        return {e.resource for t in self._traces.values() for e in t if e.resource}

    def get_time_range(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        """(earliest, latest) event timestamps, or (None, None) for an empty log."""
        starts = [t.start_time for t in self._traces.values() if len(t)]
        ends = [t.end_time for t in self._traces.values() if len(t)]
        if not starts:
            return None, None
        return min(starts), max(ends)

    def get_summary(self) -> Dict[str, Any]:
        start, end = self.get_time_range()
        variants = {tuple(t.activities) for t in self._traces.values()}
        cases = self.get_case_count()
        events = self.get_event_count()
        return {
            "name": self.name,
            "cases": cases,
            "events": events,
            "activities": len(self.get_activity_set()),
            "resources": len(self.get_resource_set()),
            "variants": len(variants),
            "avgEventsPerCase": round(events / cases, 2) if cases else 0,
            "timeRange": {
                "start": format_timestamp(start) if start else None,
                "end": format_timestamp(end) if end else None,
            },
        }

    # -------------------------------------------------------------------------
    # Import / Export
    # -------------------------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        records: Iterable[Dict[str, Any]],
        name: str = "EventLog",
        case_key: str = "caseId",
        activity_key: str = "activity",
        timestamp_key: str = "timestamp",
        resource_key: str = "resource",
        lifecycle_key: str = "lifecycle",
        skip_invalid: bool = False,
    ) -> "EventLog":
        """Build a log from flat rows (one row per event).

        Rows of a case may arrive in any order; each case is sorted by
        timestamp (stable) before its events are appended. Remaining keys
        become event attributes.

        Args:
            skip_invalid: Log and skip rows with a missing field or bad
                timestamp instead of raising ValueError
        """
        standard = {case_key, activity_key, timestamp_key, resource_key, lifecycle_key}
        grouped: Dict[str, List[Event]] = {}
        skipped = 0

        for row_number, row in enumerate(records, 1):
            case_id = row.get(case_key)
            try:
                if case_id is None or case_id == "":
                    raise ValueError("missing case id")
                event = Event(
                    activity=row.get(activity_key),
                    timestamp=row.get(timestamp_key),
                    resource=row.get(resource_key) or None,
                    lifecycle=row.get(lifecycle_key) or "complete",
                    attributes={k: v for k, v in row.items() if k not in standard and v not in (None, "")},
                )
            except ValueError as e:
                if not skip_invalid:
                    raise ValueError(f"Record {row_number}: {e}") from e
                skipped += 1
                logger.warning(f"Record {row_number} skipped: {e}")
                continue
            grouped.setdefault(str(case_id), []).append(event)

        log = cls(name)
        for case_id, events in grouped.items():
            events.sort(key=lambda e: e.timestamp)
            log.add_trace(Trace(case_id, events=events))

        logger.info(
            f"Built event log '{name}'",
            extra_fields={"cases": log.get_case_count(), "events": log.get_event_count(), "skipped": skipped},
        )
        return log

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "attributes": dict(self.attributes),
            "traces": [t.to_dict() for t in self._traces.values()],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventLog":
        log = cls(data.get("name") or "EventLog", data.get("attributes"))
        for trace_data in data.get("traces", []):
            log.add_trace(Trace.from_dict(trace_data))
        return log

    def to_csv(self) -> str:
        """One row per event; attribute keys become extra columns."""
        attribute_keys = sorted({k for t in self._traces.values() for e in t for k in e.attributes})
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(list(CSV_STANDARD_COLUMNS) + attribute_keys)
        for trace in self._traces.values():
            for event in trace:
                writer.writerow(
                    [trace.case_id, event.activity, format_timestamp(event.timestamp),
                     event.resource or "", event.lifecycle]
                    + ["" if event.attributes.get(k) is None else event.attributes.get(k) for k in attribute_keys]
                )
        return buffer.getvalue()

    @classmethod
    def from_csv(cls, source: Union[str, Path], name: Optional[str] = None) -> "EventLog":
        """Parse CSV text, or a CSV file when given a Path.

        Required columns: caseId, activity, timestamp. Rows missing one of
        them, or with an unparseable timestamp, are skipped with a warning.

        Raises:
            ValueError: If a required column is missing
        """
        if isinstance(source, Path):
            text = source.read_text(encoding="utf-8")
            name = name or source.stem
        else:
            text = source

        reader = csv.DictReader(io.StringIO(text))
        missing = [c for c in ("caseId", "activity", "timestamp") if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"CSV missing required column(s): {', '.join(missing)}")

        return cls.from_records(reader, name=name or "ImportedCSV", skip_invalid=True)
