"""Descriptive statistics shared by the analyzers."""

import math
import statistics
from typing import Dict, List, Optional, Sequence


HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS


def percentile(sorted_values: Sequence[float], fraction: float) -> Optional[float]:
    """Nearest-rank percentile: ``sorted[min(floor(n * fraction), n - 1)]``."""
    if not sorted_values:
        return None
    index = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return sorted_values[index]


def describe(values: Sequence[float]) -> Dict[str, float]:
    """count/mean/median/min/max/stddev plus p75, p90, p95, p99.

    Empty input gives a zero-filled result.
    """
    if not values:
        return {
            "count": 0, "mean": 0, "median": 0, "min": 0, "max": 0,
            "stddev": 0, "p75": 0, "p90": 0, "p95": 0, "p99": 0,
        }
    ordered: List[float] = sorted(values)
    return {
        "count": len(ordered),
        "mean": round(statistics.fmean(ordered), 2),
        "median": statistics.median(ordered),
        "min": ordered[0],
        "max": ordered[-1],
        "stddev": round(statistics.pstdev(ordered), 2),
        "p75": percentile(ordered, 0.75),
        "p90": percentile(ordered, 0.90),
        "p95": percentile(ordered, 0.95),
        "p99": percentile(ordered, 0.99),
    }


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population stddev / mean; 0 for empty input or zero mean."""
    if not values:
        return 0.0
    mean = statistics.fmean(values)
    if mean == 0:
        return 0.0
    return statistics.pstdev(values) / mean


def format_duration(ms: Optional[float]) -> str:
    """Human-readable duration: ms, s, min, h or d."""
    if ms is None:
        return "n/a"
    if ms < 1000:
        return f"{round(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    if ms < HOUR_MS:
        return f"{ms / 60_000:.1f}min"
    if ms < DAY_MS:
        return f"{ms / HOUR_MS:.1f}h"
    return f"{ms / DAY_MS:.1f}d"
