"""KPI aggregation with bootstrap confidence intervals.

KPIs are grouped into ``time``, ``quality`` and ``volume``. Per-case KPIs
carry a percentile bootstrap interval: cases are resampled with
replacement in batches of 100 iterations, up to the configured maximum,
stopping once the interval width changes by no more than 1% between
batches. Each KPI draws from its own generator seeded from
``(seed, kpi name)`` so results are reproducible and independent.

A KPI whose inputs are missing (phase not run, no cases) is emitted with
``value=None`` and the list of missing inputs.
"""

import math
import random
import statistics
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.config import get_settings
from core.observability.logging import get_logger
from process_mining.event_log import EventLog
from process_mining.stats import percentile


logger = get_logger(__name__)

KPI_GROUPS = ("time", "quality", "volume")
BATCH_SIZE = 100
STABILITY_TOLERANCE = 0.01


@dataclass
class KPI:
    name: str
    value: Optional[float]
    unit: str
    description: str = ""
    ci: Optional[Dict[str, float]] = None
    sample_size: int = 0
    missing_inputs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "description": self.description,
            "ci": self.ci,
            "sampleSize": self.sample_size,
            "missingInputs": list(self.missing_inputs),
        }


@dataclass
class KPIReport:
    case_count: int
    event_count: int
    groups: Dict[str, Dict[str, KPI]]

    @property
    def time(self) -> Dict[str, KPI]:
        return self.groups["time"]

    @property
    def quality(self) -> Dict[str, KPI]:
        return self.groups["quality"]

    @property
    def volume(self) -> Dict[str, KPI]:
        return self.groups["volume"]

    def get_kpi(self, key: str) -> Optional[KPI]:
        for group in self.groups.values():
            if key in group:
                return group[key]
        return None

    def get_all_kpis(self) -> List[Dict[str, Any]]:
        return [
            {"group": group, "key": key, **kpi.to_dict()}
            for group, kpis in self.groups.items()
            for key, kpi in kpis.items()
        ]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"caseCount": self.case_count, "eventCount": self.event_count}
        for group, kpis in self.groups.items():
            result[group] = {key: kpi.to_dict() for key, kpi in kpis.items()}
        return result


class KPIEngine:
    """Turns the log and prior phase results into KPIs.

    Args:
        confidence_level: Two-sided interval level (default 0.95)
        iterations: Maximum bootstrap iterations (settings default 1000)
        seed: Base seed (settings default 42)
    """

    def __init__(self, confidence_level: float = 0.95, iterations: Optional[int] = None,
                 seed: Optional[int] = None):
        if not 0 < confidence_level < 1:
            raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
        settings = get_settings()
        self.confidence_level = confidence_level
        self.iterations = iterations if iterations is not None else settings.kpi_bootstrap_iterations
        self.seed = seed if seed is not None else settings.kpi_bootstrap_seed
        if self.iterations < BATCH_SIZE:
            raise ValueError(f"iterations must be at least {BATCH_SIZE}, got {self.iterations}")

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    def bootstrap(self, name: str, values: Sequence[float],
                  statistic: Callable[[Sequence[float]], float] = statistics.fmean) -> Optional[Dict[str, float]]:
        """Percentile bootstrap interval of ``statistic`` over ``values``."""
        if not values:
            return None
        rng = random.Random(f"{self.seed}:{name}")
        n = len(values)
        alpha = 1 - self.confidence_level
        samples: List[float] = []
        previous_width: Optional[float] = None
        lower = upper = statistic(values)

        while len(samples) < self.iterations:
            for _ in range(BATCH_SIZE):
                samples.append(statistic([values[rng.randrange(n)] for _ in range(n)]))
            ordered = sorted(samples)
            lower = percentile(ordered, alpha / 2)
            upper = ordered[min(max(math.ceil((1 - alpha / 2) * len(ordered)) - 1, 0), len(ordered) - 1)]
            width = upper - lower
            if previous_width is not None and abs(width - previous_width) <= STABILITY_TOLERANCE * abs(previous_width):
                break
            previous_width = width

        return {
            "level": self.confidence_level,
            "lower": round(lower, 4),
            "upper": round(upper, 4),
            "iterations": len(samples),
        }

    def _kpi(self, name: str, unit: str, description: str, values: Optional[Sequence[float]],
             statistic: Callable[[Sequence[float]], float] = statistics.fmean,
             value: Optional[float] = None, missing: Optional[List[str]] = None) -> KPI:
        """Per-case KPI; ``value`` overrides the statistic of ``values``."""
        if missing:
            return KPI(name, None, unit, description, missing_inputs=missing)
        if not values:
            return KPI(name, None, unit, description, missing_inputs=["cases"])
        point = value if value is not None else statistic(values)
        return KPI(
            name=name,
            value=round(point, 4),
            unit=unit,
            description=description,
            ci=self.bootstrap(name, values, statistic),
            sample_size=len(values),
        )

    @staticmethod
    def _scalar(name: str, unit: str, description: str, value: Any, missing: Optional[List[str]] = None) -> KPI:
        if missing:
            return KPI(name, None, unit, description, missing_inputs=missing)
        return KPI(name, value, unit, description)

    # -------------------------------------------------------------------------
    # Calculation
    # -------------------------------------------------------------------------

    def calculate(self, log: EventLog, results: Optional[Dict[str, Any]] = None) -> KPIReport:
        """Compute every KPI; absent phase results only mark KPIs as missing.

        Args:
            log: Sealed event log
            results: Completed phase results keyed by phase name
                (``variants``, ``discovery``, ``conformance``,
                ``performance``, ``social``)
        """
        results = results or {}
        logger.info(f"Calculating KPIs for {log.get_case_count()} cases", extra_fields={"phases": sorted(results)})
        traces = [t for t in log if len(t)]

        report = KPIReport(
            case_count=log.get_case_count(),
            event_count=log.get_event_count(),
            groups={
                "time": self._time_kpis(traces, results.get("performance")),
                "quality": self._quality_kpis(traces, results.get("variants"), results.get("conformance"),
                                              results.get("social")),
                "volume": self._volume_kpis(log, traces, results.get("performance"), results.get("social")),
            },
        )
        return report

    def _time_kpis(self, traces, performance) -> Dict[str, KPI]:
        durations = [t.duration_ms for t in traces]
        waits = []
        for trace in traces:
            events = trace.events
            if len(events) >= 2:
                waits.append(statistics.fmean(b.timestamp_ms - a.timestamp_ms for a, b in zip(events, events[1:])))

        sla_rate = None
        sla_missing = ["performance"] if performance is None else None
        if performance is not None:
            measured = [s for s in performance.sla_compliance if s["status"] != "no-data"]
            if measured:
                sla_rate = round(sum(1 for s in measured if s["status"] == "met") / len(measured), 4)
            else:
                sla_missing = ["slaTargets"]

        return {
            "cycleTime": self._kpi("Cycle Time", "ms", "Mean case duration", durations),
            "medianCycleTime": self._kpi("Median Cycle Time", "ms", "Median case duration",
                                         durations, statistic=statistics.median),
            "avgWaitingTime": self._kpi("Average Waiting Time", "ms",
                                        "Mean time between consecutive events of a case", waits),
            "slaComplianceRate": self._scalar("SLA Compliance Rate", "ratio",
                                              "Share of measured SLA targets that are met",
                                              sla_rate, sla_missing),
        }

    def _quality_kpis(self, traces, variants, conformance, social) -> Dict[str, KPI]:
        rework = [1.0 if len(set(t.activities)) < len(t) else 0.0 for t in traces]
        happy = None
        if variants is not None and variants.happy_path is not None:
            happy_key = variants.happy_path.activities
            happy = [1.0 if t.activities == happy_key else 0.0 for t in traces]
        fitness = [c.fitness for c in conformance.case_results] if conformance is not None else None

        return {
            "reworkRate": self._kpi(
                "Rework Rate", "ratio", "Share of cases with a repeated activity", rework,
                value=variants.rework["reworkRate"] if variants is not None else None,
                missing=["variants"] if variants is None else None,
            ),
            "happyPathRate": self._kpi(
                "Happy Path Rate", "ratio", "Share of cases following the most frequent variant", happy,
                missing=["variants"] if variants is None else None,
            ),
            "variantCount": self._scalar(
                "Variant Count", "count", "Distinct activity sequences",
                variants.total_variant_count if variants is not None else None,
                ["variants"] if variants is None else None,
            ),
            "fitness": self._kpi(
                "Fitness", "ratio", "Share of observed transitions allowed by the reference model", fitness,
                value=conformance.fitness if conformance is not None else None,
                missing=["conformance"] if conformance is None else None,
            ),
            "conformanceRate": self._scalar(
                "Conformance Rate", "%", "Cases whose every transition is allowed",
                conformance.conformance_rate if conformance is not None else None,
                ["conformance"] if conformance is None else None,
            ),
            "sodViolations": self._scalar(
                "SoD Violations", "count", "Segregation-of-duty violations",
                social.sod_violations["totalViolations"] if social is not None else None,
                ["social"] if social is None else None,
            ),
        }

    def _volume_kpis(self, log, traces, performance, social) -> Dict[str, KPI]:
        events_per_case = [float(len(t)) for t in traces]
        handovers = [
            float(sum(1 for a, b in zip(t.events, t.events[1:]) if a.resource and b.resource and a.resource != b.resource))
            for t in traces
        ]
        return {
            "caseCount": self._scalar("Total Cases", "count", "", log.get_case_count()),
            "eventCount": self._scalar("Total Events", "count", "", log.get_event_count()),
            "activityTypes": self._scalar("Activity Types", "count", "", len(log.get_activity_set())),
            "eventsPerCase": self._kpi("Events per Case", "count", "Mean trace length", events_per_case),
            "handoversPerCase": self._kpi("Handovers per Case", "count",
                                          "Mean resource changes per case", handovers),
            "throughput": self._scalar(
                "Throughput", "cases/day", "Cases per day over the log time range",
                performance.throughput["casesPerDay"] if performance is not None else None,
                ["performance"] if performance is None else None,
            ),
            "resourceCount": self._scalar(
                "Unique Resources", "count", "",
                social.resource_count if social is not None else None,
                ["social"] if social is None else None,
            ),
        }
