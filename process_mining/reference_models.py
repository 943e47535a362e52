"""Reference process models and the registry that serves them.

A reference model is the expected flow of an end-to-end business process:
activities, allowed transitions (typed ``sequence``, ``parallel`` or
``choice``), valid start/end activities, SLA targets and the transitions
auditors verify. SLA targets are keyed by transition (``"A -> B"``), by
activity name (wait before the activity) or by ``__case_duration__``.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from core.observability.logging import get_logger


logger = get_logger(__name__)

CASE_DURATION_KEY = "__case_duration__"

EDGE_KINDS = ("sequence", "parallel", "choice")

UNIT_MS = {
    "ms": 1,
    "seconds": 1000,
    "minutes": 60_000,
    "hours": 3_600_000,
    "days": 86_400_000,
}


class ReferenceModelInvalidError(Exception):
    """Reference model is structurally unusable (missing or malformed activities, edges or SLA targets)."""

    def __init__(self, message: str, model_id: Optional[str] = None):
        super().__init__(message)
        self.model_id = model_id


def transition_key(source: str, target: str) -> str:
    return f"{source} -> {target}"


# =============================================================================
# Model Types
# =============================================================================

@dataclass(frozen=True)
class SLATarget:
    """Upper bound on a duration, e.g. 3 days."""
    target: float
    unit: str = "days"
    severity: str = "warning"

    def __post_init__(self):
        if self.unit not in UNIT_MS:
            raise ValueError(f"Unknown SLA unit: {self.unit}")
        if not isinstance(self.target, (int, float)) or isinstance(self.target, bool) or self.target < 0:
            raise ValueError(f"SLA target must be a non-negative number, got {self.target!r}")

    @property
    def bound_ms(self) -> float:
        return self.target * UNIT_MS[self.unit]

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target, "unit": self.unit, "severity": self.severity}

    @classmethod
    def coerce(cls, value: Any) -> "SLATarget":
        """Accept an SLATarget, a dict, or a bare number of milliseconds."""
        if isinstance(value, SLATarget):
            return value
        if isinstance(value, dict):
            return cls(target=value.get("target"), unit=value.get("unit", "days"),
                       severity=value.get("severity", "warning"))
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return cls(target=value, unit="ms")
        raise ValueError(f"Invalid SLA target: {value!r}")


@dataclass(frozen=True)
class ModelEdge:
    source: str
    target: str
    kind: str = "sequence"

    @property
    def key(self) -> str:
        return transition_key(self.source, self.target)

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.source, "to": self.target, "type": self.kind}


@dataclass
class ReferenceModel:
    """Expected flow of one process.

    ``activities`` or ``edges`` may be None when loaded from untrusted input;
    ``validate()`` rejects such models before they are used.
    """
    id: str
    name: str
    activities: Optional[List[str]] = field(default_factory=list)
    edges: Optional[List[ModelEdge]] = field(default_factory=list)
    start_activities: List[str] = field(default_factory=list)
    end_activities: List[str] = field(default_factory=list)
    sla_targets: Dict[str, SLATarget] = field(default_factory=dict)
    critical_transitions: List[str] = field(default_factory=list)

    def validate(self) -> "ReferenceModel":
        """Raise ReferenceModelInvalidError unless the model is well formed."""
        if self.activities is None:
            raise ReferenceModelInvalidError(
                f"Reference model '{self.id}' has no activity set (activities is null)", self.id)
        if self.edges is None:
            raise ReferenceModelInvalidError(
                f"Reference model '{self.id}' has no edge set (edges is null)", self.id)

        known = set(self.activities)
        for edge in self.edges:
            if edge.source not in known or edge.target not in known:
                raise ReferenceModelInvalidError(
                    f"Reference model '{self.id}' edge {edge.key} references an unknown activity", self.id)
            if edge.kind not in EDGE_KINDS:
                raise ReferenceModelInvalidError(
                    f"Reference model '{self.id}' edge {edge.key} has unknown type '{edge.kind}'", self.id)

        for label, group in (("start", self.start_activities), ("end", self.end_activities)):
            unknown = [a for a in group if a not in known]
            if unknown:
                raise ReferenceModelInvalidError(
                    f"Reference model '{self.id}' {label} activities not in activity set: {', '.join(unknown)}",
                    self.id,
                )
        return self

    # -------------------------------------------------------------------------
    # Graph Queries
    # -------------------------------------------------------------------------

    def edge_set(self) -> Set[Tuple[str, str]]:
        return {(e.source, e.target) for e in self.edges or []}

    def get_successors(self, activity: str) -> List[str]:
        return [e.target for e in self.edges or [] if e.source == activity]

    def get_predecessors(self, activity: str) -> List[str]:
        return [e.source for e in self.edges or [] if e.target == activity]

    def is_valid_transition(self, source: str, target: str) -> bool:
        return (source, target) in self.edge_set()

    def is_start_activity(self, activity: str) -> bool:
        return activity in self.start_activities

    def is_end_activity(self, activity: str) -> bool:
        return activity in self.end_activities

    def get_sla_target(self, source: str, target: str) -> Optional[SLATarget]:
        return self.sla_targets.get(transition_key(source, target))

    def shortest_path(self, source: str, target: str, max_steps: Optional[int] = None) -> Optional[List[str]]:
        """Shortest edge path source..target (inclusive), at most ``max_steps`` edges."""
        if source == target:
            return [source]
        previous: Dict[str, Optional[str]] = {source: None}
        queue = deque([(source, 0)])
        while queue:
            current, depth = queue.popleft()
            if max_steps is not None and depth >= max_steps:
                continue
            for succ in self.get_successors(current):
                if succ in previous:
                    continue
                previous[succ] = current
                if succ == target:
                    path = [succ]
                    while previous[path[-1]] is not None:
                        path.append(previous[path[-1]])
                    return list(reversed(path))
                queue.append((succ, depth + 1))
        return None

    def get_critical_path(self) -> List[str]:
        """Longest start-to-end path.

        Uses a topological DP for acyclic models and a depth-first search
        over simple paths when the model has loops.
        """
        activities = list(self.activities or [])
        in_degree = {a: 0 for a in activities}
        for edge in self.edges or []:
            in_degree[edge.target] = in_degree.get(edge.target, 0) + 1

        queue = deque(a for a, d in in_degree.items() if d == 0)
        remaining = dict(in_degree)
        topo: List[str] = []
        while queue:
            current = queue.popleft()
            topo.append(current)
            for succ in self.get_successors(current):
                remaining[succ] -= 1
                if remaining[succ] == 0:
                    queue.append(succ)

        if len(topo) < len(activities):
            return self._longest_simple_path()

        dist = {a: 0 for a in topo}
        prev: Dict[str, Optional[str]] = {a: None for a in topo}
        for start in self.start_activities:
            if start in dist:
                dist[start] = 1
        for u in topo:
            for v in self.get_successors(u):
                if dist[u] + 1 > dist[v]:
                    dist[v] = dist[u] + 1
                    prev[v] = u

        best_end, best_dist = None, -1
        for end in self.end_activities:
            if end in dist and dist[end] > best_dist:
                best_end, best_dist = end, dist[end]
        if best_end is None:
            for activity, d in dist.items():
                if d > best_dist:
                    best_end, best_dist = activity, d

        path: List[str] = []
        current = best_end
        while current is not None:
            path.insert(0, current)
            current = prev[current]
        return path

    def _longest_simple_path(self) -> List[str]:
        longest: List[str] = []
        for start in self.start_activities:
            stack = [(start, [start])]
            while stack:
                activity, path = stack.pop()
                if activity in self.end_activities and len(path) > len(longest):
                    longest = path
                for succ in self.get_successors(activity):
                    if succ not in path:
                        stack.append((succ, path + [succ]))
        return longest

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "activities": list(self.activities) if self.activities is not None else None,
            "edges": [e.to_dict() for e in self.edges] if self.edges is not None else None,
            "startActivities": list(self.start_activities),
            "endActivities": list(self.end_activities),
            "slaTargets": {k: v.to_dict() for k, v in self.sla_targets.items()},
            "criticalTransitions": list(self.critical_transitions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferenceModel":
        """Build a model from its wire form. Null activity/edge sets are kept as None.

        Raises:
            ReferenceModelInvalidError: Edges, lists or SLA targets of the wrong shape
        """
        model_id = data.get("id") or "custom"
        try:
            raw_edges = data.get("edges")
            edges = None
            if raw_edges is not None:
                edges = [
                    ModelEdge(e.get("from") or e.get("source"), e.get("to") or e.get("target"),
                              e.get("type") or e.get("kind") or "sequence")
                    for e in raw_edges
                ]
            activities = data.get("activities")
            return cls(
                id=model_id,
                name=data.get("name") or data.get("id") or "Custom model",
                activities=list(activities) if activities is not None else None,
                edges=edges,
                start_activities=list(data.get("startActivities") or []),
                end_activities=list(data.get("endActivities") or []),
                sla_targets={k: SLATarget.coerce(v) for k, v in (data.get("slaTargets") or {}).items()},
                critical_transitions=list(data.get("criticalTransitions") or []),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ReferenceModelInvalidError(f"Reference model '{model_id}' is malformed: {e}", model_id) from e


def coerce_reference_model(value: Any) -> ReferenceModel:
    if isinstance(value, ReferenceModel):
        return value
    if isinstance(value, dict):
        return ReferenceModel.from_dict(value)
    raise ReferenceModelInvalidError(f"Unsupported reference model type: {type(value).__name__}")


# =============================================================================
# Registry
# =============================================================================

class ReferenceModelRegistry:
    """Process id -> ReferenceModel. Populated at startup, read-only afterwards."""

    def __init__(self, models: Optional[Iterable[ReferenceModel]] = None):
        self._models: Dict[str, ReferenceModel] = {}
        for model in models or []:
            self.register(model)

    def register(self, model: ReferenceModel) -> None:
        model.validate()
        if model.id in self._models:
            logger.warning(f"Replacing reference model: {model.id}")
        self._models[model.id] = model
        logger.debug(
            f"Registered reference model: {model.id}",
            extra_fields={"activities": len(model.activities), "edges": len(model.edges)},
        )

    def get(self, process_id: str) -> Optional[ReferenceModel]:
        model = self._models.get(process_id)
        if model is None:
            logger.warning(f"Reference model not found: {process_id}")
        return model

    def __contains__(self, process_id: str) -> bool:
        return process_id in self._models

    def list_ids(self) -> List[str]:
        return list(self._models)

    def list_models(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": m.id,
                "name": m.name,
                "activities": len(m.activities),
                "edges": len(m.edges),
                "slaTargets": len(m.sla_targets),
            }
            for m in self._models.values()
        ]


_default_registry: Optional[ReferenceModelRegistry] = None


def get_default_registry() -> ReferenceModelRegistry:
    """Registry holding the built-in catalogue (O2C, P2P, R2R, A2R, H2R, P2M, M2S)."""
    global _default_registry
    if _default_registry is None:
        from process_mining.reference_catalog import BUILTIN_MODELS
        _default_registry = ReferenceModelRegistry(BUILTIN_MODELS)
    return _default_registry
