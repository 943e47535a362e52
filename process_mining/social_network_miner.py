"""Organizational mining: handover of work, centrality, workload, SoD.

Only events that carry a resource take part. A handover is a pair of
consecutive events in the same case performed by different resources.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence

from core.observability.logging import get_logger
from process_mining.event_log import EventLog
from process_mining.stats import coefficient_of_variation


logger = get_logger(__name__)

BALANCED_CV = 0.5

DEFAULT_SOD_RULES = [
    {"name": "Create PO / Approve PO", "activities": ["Create Purchase Order", "Approve Purchase Order"]},
    {"name": "Create PR / Approve PR", "activities": ["Create Purchase Requisition", "Approve Purchase Requisition"]},
    {"name": "Create Invoice / Approve Payment", "activities": ["Create Invoice", "Payment Run"]},
    {"name": "Goods Receipt / Invoice Receipt", "activities": ["Goods Receipt", "Invoice Receipt"]},
    {"name": "Create JE / Approve JE", "activities": ["Create Journal Entry", "Approve Journal Entry"]},
    {"name": "Create Asset / Retire Asset", "activities": ["Create Asset Master", "Retire Asset"]},
]


def validate_sod_rules(rules: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Normalize rules to ``{name, activities}``; raise ValueError on bad input."""
    normalized = []
    for index, rule in enumerate(rules):
        activities = rule.get("activities") if isinstance(rule, dict) else None
        if not activities or len(activities) < 2:
            raise ValueError(f"SoD rule {index} needs at least two activities")
        normalized.append({"name": rule.get("name") or f"rule-{index + 1}", "activities": list(activities)})
    return normalized


@dataclass
class SocialNetworkResult:
    resource_count: int
    case_count: int
    handover_matrix: Dict[str, Dict[str, int]]
    centrality: List[Dict[str, Any]]
    workload: Dict[str, Any]
    sod_violations: Dict[str, Any]
    activity_resource_matrix: List[Dict[str, Any]]
    working_together: Dict[str, Any]

    @property
    def total_handovers(self) -> int:
        return sum(c for row in self.handover_matrix.values() for c in row.values())

    def get_summary(self) -> Dict[str, Any]:
        return {
            "resourceCount": self.resource_count,
            "caseCount": self.case_count,
            "totalHandovers": self.total_handovers,
            "workloadBalanced": self.workload["isBalanced"],
            "coefficientOfVariation": self.workload["coefficientOfVariation"],
            "sodViolations": self.sod_violations["totalViolations"],
            "mostCentralResource": self.centrality[0]["resource"] if self.centrality else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "resourceCount": self.resource_count,
            "handoverMatrix": self.handover_matrix,
            "centrality": self.centrality,
            "workload": self.workload,
            "sodViolations": self.sod_violations,
            "activityResourceMatrix": self.activity_resource_matrix,
            "workingTogether": self.working_together,
        }


class SocialNetworkMiner:
    """Resource-perspective analysis of an event log."""

    def analyze(self, log: EventLog, sod_rules: Optional[Sequence[Dict[str, Any]]] = None) -> SocialNetworkResult:
        """Mine the log.

        Args:
            sod_rules: ``[{name, activities}]``; None applies the default
                ERP rule set, an empty list checks nothing
        """
        rules = validate_sod_rules(DEFAULT_SOD_RULES if sod_rules is None else sod_rules)
        logger.info(f"Mining social network from {log.get_case_count()} cases", extra_fields={"sod_rules": len(rules)})

        handovers: Dict[str, Counter] = defaultdict(Counter)
        for trace in log:
            events = trace.events
            for prev, nxt in zip(events, events[1:]):
                if prev.resource and nxt.resource and prev.resource != nxt.resource:
                    handovers[prev.resource][nxt.resource] += 1

        resources = log.get_resource_set()
        return SocialNetworkResult(
            resource_count=len(resources),
            case_count=log.get_case_count(),
            handover_matrix={r: dict(sorted(row.items())) for r, row in sorted(handovers.items())},
            centrality=self._centrality(handovers, resources),
            workload=self._workload(log),
            sod_violations=self._sod(log, rules),
            activity_resource_matrix=self._activity_resources(log),
            working_together=self._working_together(log),
        )

    @staticmethod
    def _centrality(handovers: Dict[str, Counter], resources: set) -> List[Dict[str, Any]]:
        """Degree centrality over distinct handover partners, normalized by n - 1."""
        partners: Dict[str, set] = defaultdict(set)
        volume: Counter = Counter()
        in_degree: Counter = Counter()
        out_degree: Counter = Counter()
        for source, row in handovers.items():
            for target, count in row.items():
                partners[source].add(target)
                partners[target].add(source)
                out_degree[source] += 1
                in_degree[target] += 1
                volume[source] += count
                volume[target] += count

        n = len(resources)
        ranking = [
            {
                "resource": r,
                "inDegree": in_degree[r],
                "outDegree": out_degree[r],
                "degree": len(partners[r]),
                "degreeCentrality": round(len(partners[r]) / (n - 1), 4) if n > 1 else 0.0,
                "handoverVolume": volume[r],
            }
            for r in resources
        ]
        ranking.sort(key=lambda c: (-c["degreeCentrality"], -c["handoverVolume"], c["resource"]))
        for rank, entry in enumerate(ranking, 1):
            entry["rank"] = rank
        return ranking

    @staticmethod
    def _workload(log: EventLog) -> Dict[str, Any]:
        events: Counter = Counter()
        cases: Dict[str, set] = defaultdict(set)
        for trace in log:
            for event in trace:
                if event.resource:
                    events[event.resource] += 1
                    cases[event.resource].add(trace.case_id)

        counts = list(events.values())
        cv = round(coefficient_of_variation(counts), 2)
        return {
            "resources": [
                {"resource": r, "eventCount": c, "caseCount": len(cases[r])}
                for r, c in sorted(events.items(), key=lambda i: (-i[1], i[0]))
            ],
            "mean": round(sum(counts) / len(counts), 2) if counts else 0,
            "coefficientOfVariation": cv,
            "isBalanced": cv <= BALANCED_CV,
        }

    @staticmethod
    def _sod(log: EventLog, rules: List[Dict[str, Any]]) -> Dict[str, Any]:
        """One violation per (rule, case, resource) covering two or more rule activities."""
        results = []
        for rule in rules:
            listed = set(rule["activities"])
            violations = []
            for trace in log:
                performed: Dict[str, set] = defaultdict(set)
                for event in trace:
                    if event.resource and event.activity in listed:
                        performed[event.resource].add(event.activity)
                for resource in sorted(performed):
                    if len(performed[resource]) >= 2:
                        violations.append({
                            "caseId": trace.case_id,
                            "resource": resource,
                            "activities": sorted(performed[resource]),
                        })
            results.append({
                "rule": rule["name"],
                "activities": rule["activities"],
                "violationCount": len(violations),
                "violations": violations,
                "status": "violation" if violations else "compliant",
            })
        return {
            "rules": results,
            "totalViolations": sum(r["violationCount"] for r in results),
            "rulesChecked": len(results),
            "rulesViolated": sum(1 for r in results if r["violationCount"]),
        }

    @staticmethod
    def _activity_resources(log: EventLog) -> List[Dict[str, Any]]:
        matrix: Dict[str, Counter] = defaultdict(Counter)
        for trace in log:
            for event in trace:
                if event.resource:
                    matrix[event.activity][event.resource] += 1

        entries = []
        for activity, row in matrix.items():
            ranked = sorted(row.items(), key=lambda i: (-i[1], i[0]))
            total = sum(row.values())
            entries.append({
                "activity": activity,
                "totalExecutions": total,
                "resourceCount": len(row),
                "primaryResource": ranked[0][0],
                "primaryResourceShare": round(ranked[0][1] / total * 100),
                "resources": [{"resource": r, "count": c} for r, c in ranked[:5]],
            })
        entries.sort(key=lambda e: (-e["totalExecutions"], e["activity"]))
        return entries

    @staticmethod
    def _working_together(log: EventLog) -> Dict[str, Any]:
        pairs: Counter = Counter()
        multi = 0
        for trace in log:
            members = sorted({e.resource for e in trace if e.resource})
            if len(members) < 2:
                continue
            multi += 1
            pairs.update(combinations(members, 2))

        return {
            "pairs": [
                {"resourceA": a, "resourceB": b, "sharedCases": c}
                for (a, b), c in sorted(pairs.items(), key=lambda i: (-i[1], i[0]))[:50]
            ],
            "totalPairs": len(pairs),
            "casesWithMultipleResources": multi,
        }
