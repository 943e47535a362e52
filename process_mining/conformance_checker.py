"""Conformance checking of an event log against a reference model.

Fitness is the case-average share of a case's directly-follows edges that
the reference model allows. Cases without edges, and every case checked
against an edge-free model, score 1. Precision is the share of reference
edges observed in the log. Each disallowed step is
classified into a deviation kind.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple

from core.observability.logging import get_logger
from process_mining.event_log import EventLog, Trace
from process_mining.reference_models import ReferenceModel


logger = get_logger(__name__)

DEVIATION_KINDS = ("missing-activity", "extra-activity", "wrong-order", "unexpected-start", "unexpected-end")
MAX_SKIP_DEPTH = 5
MAX_CASE_DETAILS = 100


@dataclass
class CaseConformance:
    case_id: str
    fitness: float
    is_conformant: bool
    trace_length: int
    deviations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "caseId": self.case_id,
            "fitness": round(self.fitness, 4),
            "isConformant": self.is_conformant,
            "traceLength": self.trace_length,
            "deviationCount": len(self.deviations),
            "deviations": self.deviations,
        }


@dataclass
class ConformanceResult:
    reference_model_id: str
    reference_model_name: str
    fitness: float
    precision: float
    conformance_rate: float
    fully_conformant_cases: int
    total_cases: int
    deviation_stats: Dict[str, Any]
    case_results: List[CaseConformance]
    unobserved_edges: List[str] = field(default_factory=list)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "referenceModel": self.reference_model_name,
            "fitness": self.fitness,
            "precision": self.precision,
            "conformanceRate": self.conformance_rate,
            "fullyConformantCases": self.fully_conformant_cases,
            "totalCases": self.total_cases,
            "totalDeviations": self.deviation_stats["totalDeviations"],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "referenceModelId": self.reference_model_id,
            "fitness": self.fitness,
            "precision": self.precision,
            "conformanceRate": self.conformance_rate,
            "deviationStats": self.deviation_stats,
            "unobservedEdges": self.unobserved_edges,
            "caseResults": [c.to_dict() for c in self.case_results[:MAX_CASE_DETAILS]],
        }


class ConformanceChecker:
    """Replays each trace's edges against a reference model."""

    def check(self, log: EventLog, model: ReferenceModel) -> ConformanceResult:
        """Compute fitness, precision, conformance rate and deviations.

        Raises:
            ReferenceModelInvalidError: If the model has no activity or edge set
        """
        model.validate()
        logger.info(f'Checking conformance against "{model.name}" for {log.get_case_count()} cases')

        allowed = model.edge_set()
        known = set(model.activities)
        observed: Set[Tuple[str, str]] = set()
        case_results = [self._check_trace(trace, model, allowed, known, observed) for trace in log]

        total = len(case_results)
        fitness = sum(c.fitness for c in case_results) / total if total else 1.0
        conformant = sum(1 for c in case_results if c.is_conformant)
        conformance_rate = round(conformant / total * 100, 2) if total else 100.0

        if allowed:
            precision = len(allowed & observed) / len(allowed)
        else:
            precision = 0.0 if observed else 1.0

        unobserved = sorted(f"{a} -> {b}" for a, b in allowed - observed)
        return ConformanceResult(
            reference_model_id=model.id,
            reference_model_name=model.name,
            fitness=round(fitness, 4),
            precision=round(precision, 4),
            conformance_rate=conformance_rate,
            fully_conformant_cases=conformant,
            total_cases=total,
            deviation_stats=self._aggregate(case_results),
            case_results=case_results,
            unobserved_edges=unobserved,
        )

    def _check_trace(self, trace: Trace, model: ReferenceModel, allowed: Set[Tuple[str, str]],
                     known: Set[str], observed: Set[Tuple[str, str]]) -> CaseConformance:
        activities = trace.activities
        deviations: List[Dict[str, Any]] = []

        for index, activity in enumerate(activities):
            if activity not in known:
                deviations.append({
                    "type": "extra-activity",
                    "index": index,
                    "activity": activity,
                    "description": f'Activity "{activity}" not in reference model',
                })

        if activities:
            first, last = activities[0], activities[-1]
            if model.start_activities and first in known and first not in model.start_activities:
                deviations.append({
                    "type": "unexpected-start",
                    "index": 0,
                    "activity": first,
                    "expected": list(model.start_activities),
                })
            if model.end_activities and last in known and last not in model.end_activities:
                deviations.append({
                    "type": "unexpected-end",
                    "index": len(activities) - 1,
                    "activity": last,
                    "expected": list(model.end_activities),
                })

        edges = list(zip(activities, activities[1:]))
        allowed_count = 0
        for index, (a, b) in enumerate(edges, 1):
            observed.add((a, b))
            if not allowed:
                # Edge-free reference: no ordering to check against
                allowed_count += 1
                continue
            if (a, b) in allowed:
                allowed_count += 1
                continue
            if a not in known or b not in known:
                continue
            deviations.append(self._classify(model, a, b, index))

        fitness = allowed_count / len(edges) if edges else 1.0
        deviations.sort(key=lambda d: d.get("index", 0))
        return CaseConformance(
            case_id=trace.case_id,
            fitness=fitness,
            is_conformant=allowed_count == len(edges),
            trace_length=len(activities),
            deviations=deviations,
        )

    @staticmethod
    def _classify(model: ReferenceModel, a: str, b: str, index: int) -> Dict[str, Any]:
        if model.shortest_path(b, a) is not None:
            return {
                "type": "wrong-order",
                "index": index,
                "from": a,
                "to": b,
                "activity": b,
                "description": f'"{b}" executed after "{a}" but precedes it in the reference model',
            }
        path = model.shortest_path(a, b, max_steps=MAX_SKIP_DEPTH)
        if path is not None:
            skipped = path[1:-1]
            return {
                "type": "missing-activity",
                "index": index,
                "from": a,
                "to": b,
                "activity": skipped[0] if skipped else b,
                "skippedActivities": skipped,
                "description": f'Skipped {", ".join(repr(s) for s in skipped)} between "{a}" and "{b}"',
            }
        return {
            "type": "wrong-order",
            "index": index,
            "from": a,
            "to": b,
            "activity": b,
            "description": f'No path from "{a}" to "{b}" in the reference model',
        }

    @staticmethod
    def _aggregate(case_results: List[CaseConformance]) -> Dict[str, Any]:
        by_type: Counter = Counter({kind: 0 for kind in DEVIATION_KINDS})
        by_activity: Counter = Counter()
        for result in case_results:
            for deviation in result.deviations:
                by_type[deviation["type"]] += 1
                by_activity[deviation.get("activity", "unknown")] += 1

        total = sum(by_type.values())
        cases = len(case_results)
        return {
            "totalDeviations": total,
            "casesWithDeviations": sum(1 for r in case_results if r.deviations),
            "byType": {kind: by_type[kind] for kind in DEVIATION_KINDS},
            "byActivity": [
                {"activity": a, "count": c}
                for a, c in sorted(by_activity.items(), key=lambda i: (-i[1], i[0]))[:20]
            ],
            "avgDeviationsPerCase": round(total / cases, 2) if cases else 0,
        }
