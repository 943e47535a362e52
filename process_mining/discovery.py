"""pm4py bridge for an EventLog.

Converts a log into a pm4py-formatted DataFrame and reads the
directly-follows graph, start/end activities, activity frequencies and
variants from pm4py. Scoring and ranking on top of these counts live in
the analyzers.
"""

from collections import Counter
from typing import Dict, Tuple

import pandas as pd
import pm4py

from core.observability.logging import get_logger
from process_mining.event_log import EventLog


logger = get_logger(__name__)

CASE_KEY = "case:concept:name"
ACTIVITY_KEY = "concept:name"
TIMESTAMP_KEY = "time:timestamp"


def to_dataframe(log: EventLog) -> pd.DataFrame:
    """One row per event, in trace order, formatted for pm4py."""
    rows = [
        {CASE_KEY: trace.case_id, ACTIVITY_KEY: event.activity, TIMESTAMP_KEY: event.timestamp}
        for trace in log
        for event in trace
    ]
    frame = pd.DataFrame(rows, columns=[CASE_KEY, ACTIVITY_KEY, TIMESTAMP_KEY])
    return pm4py.format_dataframe(
        frame,
        case_id=CASE_KEY,
        activity_key=ACTIVITY_KEY,
        timestamp_key=TIMESTAMP_KEY,
    )


def discover_dfg(log: EventLog) -> Tuple[Counter, Counter, Counter]:
    """(directly-follows counts, start activity counts, end activity counts)."""
    if log.get_event_count() == 0:
        return Counter(), Counter(), Counter()

    dfg, starts, ends = pm4py.discover_dfg(to_dataframe(log))
    return (
        Counter({(str(a), str(b)): int(count) for (a, b), count in dfg.items()}),
        Counter({str(a): int(count) for a, count in starts.items()}),
        Counter({str(a): int(count) for a, count in ends.items()}),
    )


def activity_frequencies(log: EventLog) -> Counter:
    if log.get_event_count() == 0:
        return Counter()
    values = pm4py.get_event_attribute_values(to_dataframe(log), ACTIVITY_KEY)
    return Counter({str(a): int(count) for a, count in values.items()})


def variant_counts(log: EventLog) -> Dict[Tuple[str, ...], int]:
    """Case count per activity sequence. Cases without events are not variants here."""
    if log.get_event_count() == 0:
        return {}

    variants = pm4py.get_variants(to_dataframe(log))
    counts: Dict[Tuple[str, ...], int] = {}
    for key, value in variants.items():
        activities = tuple(str(a) for a in key)
        counts[activities] = len(value) if isinstance(value, list) else int(value)
    logger.debug(f"pm4py reported {len(counts)} variants")
    return counts
