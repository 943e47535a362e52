"""Shared fixtures and event log builders for the test suite."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from process_mining.event_log import Event, EventLog, Trace


BASE_TIME = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

O2C_HAPPY_PATH = ["Create Sales Order", "Create Delivery", "Create Invoice", "Payment Received"]

# (activity, resource) or (activity, resource, hours since previous event)
Step = Union[str, Tuple[str, Optional[str]], Tuple[str, Optional[str], float]]


def build_trace(case_id: str, steps: Sequence[Step], start: datetime = BASE_TIME,
                gap_hours: float = 1.0) -> Trace:
    """Events one ``gap_hours`` apart unless a step carries its own gap."""
    events = []
    current = start
    for index, step in enumerate(steps):
        if isinstance(step, str):
            activity, resource, gap = step, None, gap_hours
        elif len(step) == 2:
            activity, resource, gap = step[0], step[1], gap_hours
        else:
            activity, resource, gap = step
        if index:
            current = current + timedelta(hours=gap)
        events.append(Event(activity, current, resource=resource))
    return Trace(case_id, events=events)


def build_log(cases: Dict[str, Sequence[Step]], name: str = "TestLog", gap_hours: float = 1.0) -> EventLog:
    """One trace per case; case n starts n days after BASE_TIME."""
    log = EventLog(name)
    for day, (case_id, steps) in enumerate(cases.items()):
        log.add_trace(build_trace(case_id, steps, BASE_TIME + timedelta(days=day), gap_hours))
    return log


def repeated_log(steps: Sequence[Step], count: int, prefix: str = "C") -> EventLog:
    return build_log({f"{prefix}{i + 1}": steps for i in range(count)})


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Fresh settings, metrics and API state per test; file output under tmp_path."""
    from api.state import reset_state
    from core.config import reset_settings
    from core.observability.metrics import MetricsCollector

    monkeypatch.delenv("AUDIT_LOG_PATH", raising=False)
    monkeypatch.delenv("METRICS_DB_PATH", raising=False)
    monkeypatch.setenv("ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("CHECKPOINT_DIR", str(tmp_path / "checkpoints"))
    reset_settings()
    MetricsCollector.reset_instance()
    reset_state()
    yield
    reset_state()
    MetricsCollector.reset_instance()
    reset_settings()


@pytest.fixture
def o2c_log() -> EventLog:
    """Three identical O2C cases, events one hour apart."""
    return repeated_log(O2C_HAPPY_PATH, 3, prefix="SO-")


@pytest.fixture
def mixed_o2c_log() -> EventLog:
    """Happy path cases plus a skipped delivery and a repeated invoice."""
    cases: Dict[str, List[Step]] = {}
    for i in range(6):
        cases[f"SO-{i + 1}"] = [
            ("Create Sales Order", "alice"),
            ("Create Delivery", "bob"),
            ("Create Invoice", "carol"),
            ("Payment Received", "dave"),
        ]
    cases["SO-7"] = [("Create Sales Order", "alice"), ("Create Invoice", "carol"), ("Payment Received", "dave")]
    cases["SO-8"] = [
        ("Create Sales Order", "alice"),
        ("Create Delivery", "bob"),
        ("Create Invoice", "carol"),
        ("Create Invoice", "carol"),
        ("Payment Received", "dave"),
    ]
    return build_log(cases)
