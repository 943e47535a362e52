"""Heuristic Miner: discovers a dependency graph from an event log.

Steps:
1. Directly-follows counts |a→b|, start/end activities and activity
   frequencies from pm4py
2. Dependency measure (|a→b| - |b→a|) / (|a→b| + |b→a| + 1)
3. Length-1 loops |a→a| / (|a→a| + 1) and length-2 loops
   (|aba| + |bab|) / (|aba| + |bab| + 1)
4. Edges kept when the dependency reaches the threshold; activities left
   without an incoming (or outgoing) edge keep their best-scoring ones
5. Parallel pairs, start/end activities and split/join gateways
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from core.observability.logging import get_logger
from process_mining import discovery
from process_mining.event_log import EventLog


logger = get_logger(__name__)


def _r(value: float) -> float:
    return round(value, 3)


@dataclass
class DependencyEdge:
    source: str
    target: str
    frequency: int
    dependency: float
    parallel: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "frequency": self.frequency,
            "dependency": _r(self.dependency),
            "parallel": self.parallel,
        }


@dataclass
class ProcessModel:
    """Discovered model: activities, scored edges, loops, gateways."""
    activities: List[str]
    activity_counts: Dict[str, int]
    edges: List[DependencyEdge]
    start_activities: List[Dict[str, Any]]
    end_activities: List[Dict[str, Any]]
    loops_l1: List[Dict[str, Any]] = field(default_factory=list)
    loops_l2: List[Dict[str, Any]] = field(default_factory=list)
    parallel_pairs: List[Tuple[str, str]] = field(default_factory=list)
    gateways: List[Dict[str, Any]] = field(default_factory=list)
    case_count: int = 0
    event_count: int = 0

    def get_successors(self, activity: str) -> List[str]:
        return [e.target for e in self.edges if e.source == activity]

    def get_predecessors(self, activity: str) -> List[str]:
        return [e.source for e in self.edges if e.target == activity]

    def has_transition(self, source: str, target: str) -> bool:
        return self.get_edge(source, target) is not None

    def get_edge(self, source: str, target: str) -> Optional[DependencyEdge]:
        for edge in self.edges:
            if edge.source == source and edge.target == target:
                return edge
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activities": list(self.activities),
            "activityCounts": dict(self.activity_counts),
            "edges": [e.to_dict() for e in self.edges],
            "startActivities": self.start_activities,
            "endActivities": self.end_activities,
            "loopsL1": self.loops_l1,
            "loopsL2": self.loops_l2,
            "parallelPairs": [list(p) for p in self.parallel_pairs],
            "gateways": self.gateways,
            "stats": {
                "activityCount": len(self.activities),
                "edgeCount": len(self.edges),
                "gatewayCount": len(self.gateways),
                "loopCount": len(self.loops_l1) + len(self.loops_l2),
                "caseCount": self.case_count,
                "eventCount": self.event_count,
            },
        }

    def to_text(self) -> str:
        lines = [
            f"Process Model: {len(self.activities)} activities, {len(self.edges)} edges",
            f"Cases: {self.case_count}, Events: {self.event_count}",
            "",
            "Start Activities:",
        ]
        lines += [f"  -> {s['activity']} ({s['count']} cases)" for s in self.start_activities]
        lines += ["", "Edges (dependency):"]
        for e in sorted(self.edges, key=lambda e: (-e.frequency, e.source, e.target)):
            flag = " parallel" if e.parallel else ""
            lines.append(f"  {e.source} -> {e.target} [freq={e.frequency}, dep={_r(e.dependency)}{flag}]")
        if self.loops_l1:
            lines += ["", "Self-loops:"]
            lines += [f"  {l['activity']} [freq={l['frequency']}]" for l in self.loops_l1]
        if self.loops_l2:
            lines += ["", "Length-2 loops:"]
            lines += [f"  {l['activities'][0]} <-> {l['activities'][1]} [freq={l['frequency']}]" for l in self.loops_l2]
        if self.gateways:
            lines += ["", "Gateways:"]
            for g in self.gateways:
                lines.append(f"  {g['type'].upper()}-{g['gatewayType']}: {g['activity']} -> [{', '.join(g['branches'])}]")
        lines += ["", "End Activities:"]
        lines += [f"  {e['activity']} ({e['count']} cases)" for e in self.end_activities]
        return "\n".join(lines)


class HeuristicMiner:
    """Dependency-graph discovery with noise thresholds."""

    def __init__(
        self,
        dependency_threshold: float = 0.5,
        loop_l1_threshold: float = 0.5,
        loop_l2_threshold: float = 0.5,
        parallel_ratio: float = 0.5,
        and_threshold: float = 0.1,
    ):
        self.dependency_threshold = dependency_threshold
        self.loop_l1_threshold = loop_l1_threshold
        self.loop_l2_threshold = loop_l2_threshold
        self.parallel_ratio = parallel_ratio
        self.and_threshold = and_threshold

    def mine(self, log: EventLog) -> ProcessModel:
        logger.info(f"Mining process model from {log.get_case_count()} cases, {log.get_event_count()} events")

        df, starts, ends = discovery.discover_dfg(log)
        activity_counts = discovery.activity_frequencies(log)

        loops_l1 = self._loops_l1(df)
        loops_l2 = self._loops_l2(log)
        edges, parallel_pairs = self._dependency_net(df, set(starts), set(ends))
        gateways = self._gateways(edges, log)

        model = ProcessModel(
            activities=sorted(activity_counts),
            activity_counts=dict(activity_counts),
            edges=edges,
            start_activities=self._ranked(starts),
            end_activities=self._ranked(ends),
            loops_l1=loops_l1,
            loops_l2=loops_l2,
            parallel_pairs=parallel_pairs,
            gateways=gateways,
            case_count=log.get_case_count(),
            event_count=log.get_event_count(),
        )
        logger.info(
            f"Discovered model: {len(model.activities)} activities, {len(edges)} edges, {len(gateways)} gateways"
        )
        return model

    @staticmethod
    def _ranked(counts: Counter) -> List[Dict[str, Any]]:
        return [{"activity": a, "count": c} for a, c in sorted(counts.items(), key=lambda i: (-i[1], i[0]))]

    @staticmethod
    def dependency(df: Counter, a: str, b: str) -> float:
        ab, ba = df.get((a, b), 0), df.get((b, a), 0)
        return (ab - ba) / (ab + ba + 1)

    # -------------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------------

    def _loops_l1(self, df: Counter) -> List[Dict[str, Any]]:
        loops = []
        for (a, b), count in sorted(df.items()):
            if a != b:
                continue
            dep = count / (count + 1)
            if dep >= self.loop_l1_threshold:
                loops.append({"activity": a, "frequency": count, "dependency": _r(dep)})
        return loops

    def _loops_l2(self, log: EventLog) -> List[Dict[str, Any]]:
        patterns: Counter = Counter()
        for trace in log:
            acts = trace.activities
            for a, b, c in zip(acts, acts[1:], acts[2:]):
                if a == c and a != b:
                    patterns[(a, b)] += 1

        loops = []
        seen: Set[frozenset] = set()
        for (a, b), count in sorted(patterns.items()):
            pair = frozenset((a, b))
            if pair in seen:
                continue
            seen.add(pair)
            reverse = patterns.get((b, a), 0)
            dep = (count + reverse) / (count + reverse + 1)
            if dep >= self.loop_l2_threshold:
                loops.append({
                    "activities": [a, b],
                    "frequency": count,
                    "reverseFrequency": reverse,
                    "dependency": _r(dep),
                })
        return loops

    # -------------------------------------------------------------------------
    # Dependency Net
    # -------------------------------------------------------------------------

    def _dependency_net(self, df: Counter, starts: Set[str], ends: Set[str]) -> Tuple[List[DependencyEdge], List[Tuple[str, str]]]:
        observed = {pair: count for pair, count in df.items() if pair[0] != pair[1]}
        retained: Dict[Tuple[str, str], float] = {}

        for (a, b) in observed:
            dep = self.dependency(df, a, b)
            if dep >= self.dependency_threshold:
                retained[(a, b)] = dep

        activities = {a for pair in observed for a in pair}

        # keep each activity connected to the start/end sets
        for activity in sorted(activities):
            if activity not in starts and not any(t == activity for (_, t) in retained):
                self._keep_best(retained, df, [p for p in observed if p[1] == activity])
            if activity not in ends and not any(s == activity for (s, _) in retained):
                self._keep_best(retained, df, [p for p in observed if p[0] == activity])

        parallel_pairs: List[Tuple[str, str]] = []
        for (a, b) in sorted(observed):
            if a >= b or (b, a) not in observed:
                continue
            ab, ba = observed[(a, b)], observed[(b, a)]
            balanced = min(ab, ba) / max(ab, ba) >= self.parallel_ratio
            if balanced and abs(self.dependency(df, a, b)) < self.dependency_threshold:
                parallel_pairs.append((a, b))
        parallel_set = {frozenset(p) for p in parallel_pairs}

        edges = [
            DependencyEdge(a, b, observed[(a, b)], dep, parallel=frozenset((a, b)) in parallel_set)
            for (a, b), dep in sorted(retained.items())
        ]
        return edges, parallel_pairs

    def _keep_best(self, retained: Dict[Tuple[str, str], float], df: Counter, candidates: List[Tuple[str, str]]) -> None:
        if not candidates:
            return
        scores = {pair: self.dependency(df, *pair) for pair in candidates}
        best = max(scores.values())
        for pair, score in scores.items():
            if score == best:
                retained[pair] = score

    # -------------------------------------------------------------------------
    # Gateways
    # -------------------------------------------------------------------------

    def _gateways(self, edges: List[DependencyEdge], log: EventLog) -> List[Dict[str, Any]]:
        outgoing: Dict[str, List[DependencyEdge]] = {}
        incoming: Dict[str, List[DependencyEdge]] = {}
        for edge in edges:
            outgoing.setdefault(edge.source, []).append(edge)
            incoming.setdefault(edge.target, []).append(edge)

        case_sets = [set(trace.activities) for trace in log]
        gateways = []
        for kind, groups, other in (("split", outgoing, "target"), ("join", incoming, "source")):
            for activity, group in sorted(groups.items()):
                if len(group) < 2:
                    continue
                branches = [getattr(e, other) for e in group]
                gateways.append({
                    "type": self._classify(branches, case_sets),
                    "gatewayType": kind,
                    "activity": activity,
                    "branches": branches,
                    "branchFrequencies": [{other: getattr(e, other), "frequency": e.frequency} for e in group],
                })
        return gateways

    def _classify(self, branches: List[str], case_sets: List[Set[str]]) -> str:
        """and / xor / or from how often the branches co-occur in a case."""
        both = either = 0
        for present in case_sets:
            hits = sum(1 for b in branches if b in present)
            if hits >= 2:
                both += 1
            if hits >= 1:
                either += 1
        if either == 0:
            return "xor"
        rate = both / either
        if rate > 1 - self.and_threshold:
            return "and"
        if rate < self.and_threshold:
            return "xor"
        return "or"
