"""Variant analysis: distinct activity sequences, happy path, rework, clusters.

A variant is the ordered list of activities of a case; cases with the same
list share a variant; pm4py supplies the variant set. Variants are ranked by
case count (descending), then by length (ascending), then by activity
sequence, so rank 1 is the happy path.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger
from core.similarity import normalized_distance
from process_mining import discovery
from process_mining.event_log import EventLog
from process_mining.stats import describe


logger = get_logger(__name__)

VARIANT_SEPARATOR = " → "
TOP_REWORK_ACTIVITIES = 10


def variant_key(activities: List[str]) -> str:
    return VARIANT_SEPARATOR.join(activities)


@dataclass
class Variant:
    rank: int
    activities: List[str]
    case_ids: List[str]
    durations_ms: List[int] = field(default_factory=list, repr=False)
    percentage: float = 0.0

    @property
    def key(self) -> str:
        return variant_key(self.activities)

    @property
    def frequency(self) -> int:
        return len(self.case_ids)

    @property
    def rework_activities(self) -> List[Dict[str, Any]]:
        counts = Counter(self.activities)
        return [{"activity": a, "occurrences": c} for a, c in counts.items() if c > 1]

    @property
    def has_rework(self) -> bool:
        return len(set(self.activities)) < len(self.activities)

    def to_dict(self, include_cases: bool = True) -> Dict[str, Any]:
        result = {
            "rank": self.rank,
            "variantKey": self.key,
            "activities": list(self.activities),
            "frequency": self.frequency,
            "percentage": self.percentage,
            "hasRework": self.has_rework,
            "reworkActivities": self.rework_activities,
            "durationStats": describe(self.durations_ms),
        }
        if include_cases:
            result["caseIds"] = list(self.case_ids)
        return result


@dataclass
class VariantAnalysisResult:
    total_variant_count: int
    total_case_count: int
    variants: List[Variant]
    happy_path: Optional[Variant]
    rework: Dict[str, Any]
    clusters: List[Dict[str, Any]]
    deviations: List[Dict[str, Any]]

    def get_summary(self) -> Dict[str, Any]:
        top5 = sum(v.frequency for v in self.variants[:5])
        return {
            "totalVariants": self.total_variant_count,
            "totalCases": self.total_case_count,
            "happyPathFrequency": self.happy_path.frequency if self.happy_path else 0,
            "happyPathPercentage": self.happy_path.percentage if self.happy_path else 0,
            "reworkRate": self.rework["reworkRate"],
            "clusterCount": len(self.clusters),
            "top5VariantsCoverage": round(top5 / self.total_case_count * 100, 2) if self.total_case_count else 0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "totalVariantCount": self.total_variant_count,
            "totalCaseCount": self.total_case_count,
            "happyPath": self.happy_path.to_dict(include_cases=False) if self.happy_path else None,
            "variants": [v.to_dict() for v in self.variants],
            "rework": self.rework,
            "clusters": self.clusters,
            "deviations": self.deviations,
        }


class VariantAnalyzer:
    """Discovers variants and their deviations from the happy path.

    Args:
        cluster: Group near-duplicate variants
        cluster_threshold: Max normalized edit distance to a cluster's seed
        max_variants: Variants considered for clustering and deviations
    """

    def __init__(self, cluster: bool = True, cluster_threshold: float = 0.3, max_variants: int = 100):
        if not 0 <= cluster_threshold <= 1:
            raise ValueError(f"cluster_threshold must be in [0, 1], got {cluster_threshold}")
        self.cluster = cluster
        self.cluster_threshold = cluster_threshold
        self.max_variants = max_variants

    def analyze(self, log: EventLog) -> VariantAnalysisResult:
        total_cases = log.get_case_count()
        logger.info(f"Analyzing variants for {total_cases} cases")

        counts = discovery.variant_counts(log)
        grouped: Dict[tuple, Variant] = {
            activities: Variant(rank=0, activities=list(activities), case_ids=[]) for activities in counts
        }
        for trace in log:
            activities = tuple(trace.activities)
            variant = grouped.get(activities)
            if variant is None:
                # cases without events
                variant = Variant(rank=0, activities=list(activities), case_ids=[])
                grouped[activities] = variant
            variant.case_ids.append(trace.case_id)
            if len(trace) >= 2:
                variant.durations_ms.append(trace.duration_ms)

        variants = sorted(grouped.values(), key=lambda v: (-v.frequency, len(v.activities), tuple(v.activities)))
        for rank, variant in enumerate(variants, 1):
            variant.rank = rank
            variant.percentage = round(variant.frequency / total_cases * 100, 2) if total_cases else 0.0

        happy_path = variants[0] if variants else None
        considered = variants[:self.max_variants]

        logger.info(f"Found {len(variants)} unique variants")
        return VariantAnalysisResult(
            total_variant_count=len(variants),
            total_case_count=total_cases,
            variants=variants,
            happy_path=happy_path,
            rework=self._detect_rework(log),
            clusters=self._cluster(considered) if self.cluster else [],
            deviations=self._deviations(considered, happy_path),
        )

    # -------------------------------------------------------------------------
    # Rework
    # -------------------------------------------------------------------------

    def _detect_rework(self, log: EventLog) -> Dict[str, Any]:
        cases_with_rework = 0
        repeat_counts: Counter = Counter()
        case_counts: Counter = Counter()

        for trace in log:
            counts = Counter(trace.activities)
            repeated = {a: c - 1 for a, c in counts.items() if c > 1}
            if repeated:
                cases_with_rework += 1
            for activity, extra in repeated.items():
                repeat_counts[activity] += extra
                case_counts[activity] += 1

        total_cases = log.get_case_count()
        top = sorted(repeat_counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_REWORK_ACTIVITIES]
        return {
            "casesWithRework": cases_with_rework,
            "reworkRate": cases_with_rework / total_cases if total_cases else 0.0,
            "firstTimeRightRate": (total_cases - cases_with_rework) / total_cases if total_cases else 1.0,
            "totalReworkEvents": sum(repeat_counts.values()),
            "topReworkActivities": [
                {"activity": a, "repeatCount": c, "caseCount": case_counts[a]} for a, c in top
            ],
        }

    # -------------------------------------------------------------------------
    # Clustering
    # -------------------------------------------------------------------------

    def _cluster(self, variants: List[Variant]) -> List[Dict[str, Any]]:
        """Greedy clustering in rank order: each unassigned variant seeds a cluster."""
        clusters: List[Dict[str, Any]] = []
        assigned = set()

        for i, seed in enumerate(variants):
            if i in assigned:
                continue
            assigned.add(i)
            members = [seed]
            for j in range(i + 1, len(variants)):
                if j in assigned:
                    continue
                if normalized_distance(seed.activities, variants[j].activities) <= self.cluster_threshold:
                    members.append(variants[j])
                    assigned.add(j)

            clusters.append({
                "clusterId": len(clusters),
                "representativeVariant": seed.key,
                "variants": [m.key for m in members],
                "totalCases": sum(m.frequency for m in members),
                "memberDetails": [{"rank": m.rank, "caseCount": m.frequency} for m in members],
            })
        return clusters

    # -------------------------------------------------------------------------
    # Deviations
    # -------------------------------------------------------------------------

    def _deviations(self, variants: List[Variant], happy_path: Optional[Variant]) -> List[Dict[str, Any]]:
        if happy_path is None:
            return []
        happy_set = set(happy_path.activities)
        deviations = []

        for variant in variants:
            if variant is happy_path:
                continue
            variant_set = set(variant.activities)
            skipped = [a for a in happy_path.activities if a not in variant_set]
            inserted = [a for a in variant.activities if a not in happy_set]

            if skipped and inserted:
                kind = "substitution"
            elif skipped:
                kind = "skip"
            elif inserted:
                kind = "insertion"
            elif list(dict.fromkeys(variant.activities)) == list(dict.fromkeys(happy_path.activities)):
                kind = "repetition"
            else:
                kind = "reorder"

            deviations.append({
                "variantRank": variant.rank,
                "caseCount": variant.frequency,
                "percentage": variant.percentage,
                "editDistance": round(normalized_distance(happy_path.activities, variant.activities), 4),
                "skippedActivities": skipped,
                "insertedActivities": inserted,
                "type": kind,
            })
        return deviations
