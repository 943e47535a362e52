"""Performance analysis: case durations, waiting times, bottlenecks, SLAs.

All durations are in milliseconds. A bottleneck is a directly-follows pair
whose median wait is at least twice the median over all waits, is
non-zero, and occurs in at least 5% of cases.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.observability.logging import get_logger
from process_mining.event_log import EventLog, Trace
from process_mining.reference_models import CASE_DURATION_KEY, SLATarget
from process_mining.stats import DAY_MS, describe, percentile


logger = get_logger(__name__)

BOTTLENECK_FACTOR = 2.0
BOTTLENECK_MIN_CASE_SHARE = 0.05
SLA_AT_RISK_FRACTION = 0.8
SLA_STATUSES = ("met", "at-risk", "breached", "no-data")


@dataclass
class PerformanceResult:
    case_count: int
    event_count: int
    case_durations: Dict[str, Any]
    activity_stats: Dict[str, Dict[str, Any]]
    transition_stats: Dict[str, Dict[str, Any]]
    global_median_wait_ms: Optional[float]
    bottlenecks: List[Dict[str, Any]]
    sla_compliance: List[Dict[str, Any]]
    throughput: Dict[str, Any]
    outliers: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def sla_breaches(self) -> List[Dict[str, Any]]:
        return [s for s in self.sla_compliance if s["status"] == "breached"]

    def get_summary(self) -> Dict[str, Any]:
        stats = self.case_durations["stats"]
        top = self.bottlenecks[0] if self.bottlenecks else None
        return {
            "caseCount": self.case_count,
            "eventCount": self.event_count,
            "medianCaseDurationMs": stats["median"],
            "p90CaseDurationMs": stats["p90"],
            "p99CaseDurationMs": stats["p99"],
            "bottleneckCount": len(self.bottlenecks),
            "topBottleneck": top["transition"] if top else None,
            "slaBreaches": len(self.sla_breaches),
            "slaAtRisk": sum(1 for s in self.sla_compliance if s["status"] == "at-risk"),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "caseDurations": self.case_durations,
            "activityStats": self.activity_stats,
            "transitionStats": self.transition_stats,
            "globalMedianWaitMs": self.global_median_wait_ms,
            "bottlenecks": self.bottlenecks,
            "slaCompliance": self.sla_compliance,
            "throughput": self.throughput,
            "outliers": self.outliers,
        }


class PerformanceAnalyzer:
    """Timing analysis over a sealed event log."""

    def analyze(self, log: EventLog, sla_targets: Optional[Dict[str, Any]] = None) -> PerformanceResult:
        logger.info(f"Analyzing performance for {log.get_case_count()} cases")
        traces = [t for t in log if len(t)]
        total_cases = log.get_case_count()

        durations = [(t.case_id, t.duration_ms) for t in traces]
        duration_stats = describe([d for _, d in durations])

        waits: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        pair_cases: Dict[Tuple[str, str], set] = defaultdict(set)
        service: Dict[str, List[int]] = defaultdict(list)
        activity_counts: Dict[str, int] = defaultdict(int)
        activity_resources: Dict[str, set] = defaultdict(set)

        for trace in traces:
            events = trace.events
            for event in events:
                activity_counts[event.activity] += 1
                if event.resource:
                    activity_resources[event.activity].add(event.resource)
            for prev, nxt in zip(events, events[1:]):
                wait = nxt.timestamp_ms - prev.timestamp_ms
                waits[(prev.activity, nxt.activity)].append(wait)
                pair_cases[(prev.activity, nxt.activity)].add(trace.case_id)
                service[prev.activity].append(wait)

        all_waits = [w for values in waits.values() for w in values]
        global_median = statistics.median(all_waits) if all_waits else None

        transition_stats = {
            f"{a} -> {b}": {
                "from": a,
                "to": b,
                "count": len(values),
                "caseCount": len(pair_cases[(a, b)]),
                "waitTimeStats": describe(values),
            }
            for (a, b), values in sorted(waits.items())
        }
        activity_stats = {
            activity: {
                "count": activity_counts[activity],
                "resourceCount": len(activity_resources[activity]),
                "serviceTimeStats": describe(service.get(activity, [])),
            }
            for activity in sorted(activity_counts)
        }

        return PerformanceResult(
            case_count=total_cases,
            event_count=log.get_event_count(),
            case_durations={
                "stats": duration_stats,
                "cases": [{"caseId": c, "durationMs": d} for c, d in durations],
            },
            activity_stats=activity_stats,
            transition_stats=transition_stats,
            global_median_wait_ms=global_median,
            bottlenecks=self._bottlenecks(waits, pair_cases, global_median, total_cases),
            sla_compliance=self._sla_compliance(traces, sla_targets or {}),
            throughput=self._throughput(log),
            outliers=self._outliers(durations),
        )

    # -------------------------------------------------------------------------
    # Bottlenecks
    # -------------------------------------------------------------------------

    @staticmethod
    def _bottlenecks(waits: Dict[Tuple[str, str], List[int]], pair_cases: Dict[Tuple[str, str], set],
                     global_median: Optional[float], total_cases: int) -> List[Dict[str, Any]]:
        if not global_median or not total_cases:
            return []
        found = []
        for (a, b), values in waits.items():
            median = statistics.median(values)
            case_share = len(pair_cases[(a, b)]) / total_cases
            if median <= 0 or median < BOTTLENECK_FACTOR * global_median:
                continue
            if case_share < BOTTLENECK_MIN_CASE_SHARE:
                continue
            found.append({
                "from": a,
                "to": b,
                "transition": f"{a} -> {b}",
                "medianDuration": median,
                "meanDuration": round(statistics.fmean(values), 2),
                "p90Duration": percentile(sorted(values), 0.90),
                "frequency": len(values),
                "caseShare": round(case_share, 4),
                "ratioToGlobalMedian": round(median / global_median, 2),
                "impact": median * len(values),
            })
        found.sort(key=lambda b: (-b["impact"], b["transition"]))
        return found

    # -------------------------------------------------------------------------
    # SLA Compliance
    # -------------------------------------------------------------------------

    @staticmethod
    def _sla_samples(traces: List[Trace], key: str) -> List[int]:
        samples: List[int] = []
        if key == CASE_DURATION_KEY:
            return [t.duration_ms for t in traces]

        if " -> " in key:
            source, target = key.split(" -> ", 1)
            for trace in traces:
                events = trace.events
                start = next((i for i, e in enumerate(events) if e.activity == source), None)
                if start is None:
                    continue
                end = next((e for e in events[start + 1:] if e.activity == target), None)
                if end is not None:
                    samples.append(end.timestamp_ms - events[start].timestamp_ms)
            return samples

        for trace in traces:
            events = trace.events
            for prev, nxt in zip(events, events[1:]):
                if nxt.activity == key:
                    samples.append(nxt.timestamp_ms - prev.timestamp_ms)
        return samples

    def _sla_compliance(self, traces: List[Trace], sla_targets: Dict[str, Any]) -> List[Dict[str, Any]]:
        results = []
        for key, raw in sla_targets.items():
            target = SLATarget.coerce(raw)
            bound = target.bound_ms
            samples = sorted(self._sla_samples(traces, key))
            entry: Dict[str, Any] = {
                "sla": key,
                "target": target.target,
                "unit": target.unit,
                "severity": target.severity,
                "boundMs": bound,
            }
            if not samples:
                entry.update({"status": "no-data", "observed": None, "breachCount": 0,
                              "totalCount": 0, "complianceRate": None})
                results.append(entry)
                continue

            p90 = percentile(samples, 0.90)
            if p90 > bound:
                status = "breached"
            elif p90 >= SLA_AT_RISK_FRACTION * bound:
                status = "at-risk"
            else:
                status = "met"
            breaches = sum(1 for s in samples if s > bound)
            entry.update({
                "status": status,
                "observed": {"median": statistics.median(samples), "p90": p90, "max": samples[-1]},
                "breachCount": breaches,
                "totalCount": len(samples),
                "complianceRate": round((len(samples) - breaches) / len(samples) * 100, 2),
            })
            results.append(entry)
        return results

    # -------------------------------------------------------------------------
    # Throughput / Outliers
    # -------------------------------------------------------------------------

    @staticmethod
    def _throughput(log: EventLog) -> Dict[str, Any]:
        start, end = log.get_time_range()
        span_ms = (end - start).total_seconds() * 1000 if start else 0
        days = span_ms / DAY_MS
        cases, events = log.get_case_count(), log.get_event_count()
        return {
            "totalCases": cases,
            "totalEvents": events,
            "timeRangeDays": round(days, 2),
            "casesPerDay": round(cases / days, 2) if days else 0,
            "eventsPerDay": round(events / days, 2) if days else 0,
        }

    @staticmethod
    def _outliers(durations: List[Tuple[str, int]]) -> List[Dict[str, Any]]:
        """IQR rule on case durations; needs at least four cases."""
        if len(durations) < 4:
            return []
        ordered = sorted(d for _, d in durations)
        q1, q3 = percentile(ordered, 0.25), percentile(ordered, 0.75)
        iqr = q3 - q1
        lower, upper = q1 - 1.5 * iqr, q3 + 1.5 * iqr
        median = statistics.median(ordered)
        return [
            {
                "caseId": case_id,
                "durationMs": d,
                "direction": "slow" if d > upper else "fast",
                "deviationFromMedianPct": round((d - median) / (median or 1) * 100),
            }
            for case_id, d in durations
            if d < lower or d > upper
        ]
