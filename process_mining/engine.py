"""
Process Intelligence Engine

Runs the six analysis phases over one event log, in a fixed order:

    variants -> discovery -> conformance -> performance -> social -> kpis

Each analyzer call is wrapped in its own try/except, so a failing phase is
recorded in ``report.errors`` and the remaining phases still run. The KPI
phase reads whatever earlier phases produced and marks the rest as missing.

Usage:
    from process_mining.engine import ProcessIntelligenceEngine

    engine = ProcessIntelligenceEngine()
    report = engine.analyze(log, process_id="O2C")
    print(report.get_summary())
"""

import json
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.observability.logging import (
    get_logger,
    log_phase_complete,
    log_phase_error,
    log_phase_start,
    with_correlation,
)
from core.observability.metrics import (
    record_phase_completed,
    record_phase_failed,
    record_phase_skipped,
    record_run_cancelled,
    record_run_completed,
    record_run_started,
)
from process_mining.conformance_checker import ConformanceChecker
from process_mining.event_log import EventLog, format_timestamp
from process_mining.heuristic_miner import HeuristicMiner
from process_mining.kpi_engine import KPIEngine
from process_mining.performance_analyzer import PerformanceAnalyzer
from process_mining.reference_models import (
    ReferenceModel,
    ReferenceModelInvalidError,
    ReferenceModelRegistry,
    coerce_reference_model,
    get_default_registry,
)
from process_mining.social_network_miner import SocialNetworkMiner
from process_mining.stats import format_duration
from process_mining.variant_analyzer import VariantAnalyzer


logger = get_logger(__name__)

PHASES = ("variants", "discovery", "conformance", "performance", "social", "kpis")

# Wire names of the phase results in the serialized report
PHASE_WIRE_NAMES = {
    "variants": "variantAnalysis",
    "discovery": "processModel",
    "conformance": "conformance",
    "performance": "performance",
    "social": "socialNetwork",
    "kpis": "kpis",
}

SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}

ProgressCallback = Callable[[str, Any], None]


# =============================================================================
# Errors / Cancellation
# =============================================================================

class UnknownProcessError(Exception):
    """Raised when a process id has no reference model in the registry."""

    def __init__(self, process_id: str):
        self.process_id = process_id
        super().__init__(f"Unknown process: {process_id}")


class CancellationToken:
    """Cooperative cancellation, checked by the engine between phases."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Analysis cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# =============================================================================
# Report
# =============================================================================

class ProcessIntelligenceReport:
    """Result of one engine run. ``phases`` holds only completed phases."""

    def __init__(
        self,
        run_id: str,
        process_id: Optional[str],
        reference_model_name: Optional[str],
        event_log_summary: Dict[str, Any],
        phases: Dict[str, Any],
        phase_durations: Dict[str, float],
        recommendations: List[Dict[str, Any]],
        executive_summary: Dict[str, Any],
        errors: List[Dict[str, str]],
        skipped: List[Dict[str, str]],
        duration_ms: float,
        timestamp: str,
    ):
        self.run_id = run_id
        self.process_id = process_id
        self.reference_model_name = reference_model_name
        self.event_log_summary = event_log_summary
        self.phases = phases
        self.phase_durations = phase_durations
        self.recommendations = recommendations
        self.executive_summary = executive_summary
        self.errors = errors
        self.skipped = skipped
        self.duration_ms = duration_ms
        self.timestamp = timestamp

    @property
    def cancelled(self) -> bool:
        return any(e["phase"] == "cancelled" for e in self.errors)

    def get_summary(self) -> Dict[str, Any]:
        variants = self.phases.get("variants")
        conformance = self.phases.get("conformance")
        performance = self.phases.get("performance")
        social = self.phases.get("social")
        return {
            "runId": self.run_id,
            "processId": self.process_id,
            "referenceModel": self.reference_model_name,
            "cases": self.event_log_summary.get("cases"),
            "events": self.event_log_summary.get("events"),
            "variantCount": variants.total_variant_count if variants else None,
            "fitness": conformance.fitness if conformance else None,
            "precision": conformance.precision if conformance else None,
            "conformanceRate": conformance.conformance_rate if conformance else None,
            "bottleneckCount": len(performance.bottlenecks) if performance else 0,
            "sodViolations": social.sod_violations["totalViolations"] if social else 0,
            "recommendationCount": len(self.recommendations),
            "highSeverityCount": len(self.get_critical_findings()),
            "completedPhases": self.get_completed_phases(),
            "errors": len(self.errors),
            "skipped": len(self.skipped),
            "duration": self.duration_ms,
        }

    def get_critical_findings(self) -> List[Dict[str, Any]]:
        return [r for r in self.recommendations if r["severity"] == "high"]

    def get_phase(self, name: str) -> Optional[Any]:
        """Phase result by phase name (``variants``) or wire name (``variantAnalysis``)."""
        if name in self.phases:
            return self.phases[name]
        for phase, wire_name in PHASE_WIRE_NAMES.items():
            if wire_name == name:
                return self.phases.get(phase)
        return None

    def get_completed_phases(self) -> List[str]:
        return [p for p in PHASES if p in self.phases]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "executiveSummary": self.executive_summary,
            "recommendations": self.recommendations,
            "phases": {
                PHASE_WIRE_NAMES[name]: self.phases[name].to_dict()
                for name in self.get_completed_phases()
            },
            "phaseDurations": self.phase_durations,
            "errors": self.errors,
            "skipped": self.skipped,
            "duration": self.duration_ms,
            "timestamp": self.timestamp,
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str, ensure_ascii=False)


# =============================================================================
# Engine
# =============================================================================

class ProcessIntelligenceEngine:
    """Sequential orchestrator over the six analyzers.

    Args:
        registry: Reference model registry (defaults to the built-in catalogue)
        dependency_threshold: Heuristic Miner dependency threshold
        cluster_threshold: Variant clustering distance threshold
        confidence_level: KPI bootstrap interval level
        kpi_seed: KPI bootstrap base seed (settings default when None)
        sod_rules: Default SoD rules for runs that pass none
    """

    def __init__(
        self,
        registry: Optional[ReferenceModelRegistry] = None,
        dependency_threshold: float = 0.5,
        cluster_threshold: float = 0.3,
        confidence_level: float = 0.95,
        kpi_seed: Optional[int] = None,
        sod_rules: Optional[List[Dict[str, Any]]] = None,
    ):
        self.registry = registry or get_default_registry()
        self.variant_analyzer = VariantAnalyzer(cluster_threshold=cluster_threshold)
        self.heuristic_miner = HeuristicMiner(dependency_threshold=dependency_threshold)
        self.conformance_checker = ConformanceChecker()
        self.performance_analyzer = PerformanceAnalyzer()
        self.social_network_miner = SocialNetworkMiner()
        self.kpi_engine = KPIEngine(confidence_level=confidence_level, seed=kpi_seed)
        self.sod_rules = sod_rules

    def resolve_reference_model(self, process_id: Optional[str],
                                reference_model: Any = None) -> Optional[ReferenceModel]:
        """An explicit model wins; otherwise look the process id up.

        Raises:
            UnknownProcessError: If ``process_id`` is not in the registry
            ReferenceModelInvalidError: If ``reference_model`` cannot be read
        """
        if reference_model is not None:
            return coerce_reference_model(reference_model)
        if not process_id:
            return None
        if process_id not in self.registry:
            raise UnknownProcessError(process_id)
        return self.registry.get(process_id)

    def analyze(
        self,
        log: EventLog,
        process_id: Optional[str] = None,
        reference_model: Any = None,
        sla_targets: Optional[Dict[str, Any]] = None,
        sod_rules: Optional[List[Dict[str, Any]]] = None,
        skip: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ProcessIntelligenceReport:
        """Run all phases and build the report.

        Args:
            log: Event log; sealed before the first phase runs
            process_id: Built-in process (O2C, P2P, ...) used for conformance
            reference_model: ReferenceModel or its dict form; overrides process_id
            sla_targets: SLA targets; defaults to the reference model's
            sod_rules: SoD rules; None applies the default ERP rule set
            skip: Phase names to leave out
            on_progress: Called as ``on_progress(phase, result)`` after each phase
            cancellation: Token checked before each phase

        Raises:
            UnknownProcessError: Unknown process id (before any phase runs)
            ValueError: Unknown phase name in ``skip``
        """
        skip_set = set(skip or [])
        unknown = skip_set - set(PHASES)
        if unknown:
            raise ValueError(f"Unknown phase(s) in skip: {', '.join(sorted(unknown))}")

        # a malformed explicit model fails the conformance phase only
        model_error: Optional[ReferenceModelInvalidError] = None
        try:
            model = self.resolve_reference_model(process_id, reference_model)
        except ReferenceModelInvalidError as e:
            model, model_error = None, e
        if sla_targets is None:
            sla_targets = (model.sla_targets if model is not None else None) or {}
        if sod_rules is None:
            sod_rules = self.sod_rules

        log.seal()
        run_id = f"run-{uuid.uuid4().hex[:12]}"
        started = time.monotonic()
        phases: Dict[str, Any] = {}
        durations: Dict[str, float] = {}
        errors: List[Dict[str, str]] = []
        skipped: List[Dict[str, str]] = []

        def conformance() -> Any:
            if model_error is not None:
                raise model_error
            return self.conformance_checker.check(log, model)

        calls: Dict[str, Callable[[], Any]] = {
            "variants": lambda: self.variant_analyzer.analyze(log),
            "discovery": lambda: self.heuristic_miner.mine(log),
            "conformance": conformance,
            "performance": lambda: self.performance_analyzer.analyze(log, sla_targets),
            "social": lambda: self.social_network_miner.analyze(log, sod_rules),
            "kpis": lambda: self.kpi_engine.calculate(log, dict(phases)),
        }

        with with_correlation(run_id=run_id, process_id=process_id):
            record_run_started(process_id or "custom", run_id)
            logger.info(
                f"Starting process intelligence analysis: {log.get_case_count()} cases, "
                f"{log.get_event_count()} events",
                extra_fields={"reference_model": model.id if model else None},
            )

            for phase in PHASES:
                if cancellation is not None and cancellation.cancelled:
                    message = cancellation.reason or "Analysis cancelled"
                    logger.warning(f"Analysis cancelled before phase: {phase}")
                    errors.append({"phase": "cancelled", "message": message})
                    record_run_cancelled(process_id or "custom", run_id)
                    break
                if phase in skip_set:
                    skipped.append({"phase": phase, "reason": "Skipped by caller"})
                    record_phase_skipped(phase)
                    continue
                if phase == "conformance" and model is None and model_error is None:
                    skipped.append({"phase": phase, "reason": "No reference model"})
                    record_phase_skipped(phase)
                    continue
                self._run_phase(phase, calls[phase], phases, durations, errors, on_progress)

            duration_ms = round((time.monotonic() - started) * 1000, 2)
            if not any(e["phase"] == "cancelled" for e in errors):
                record_run_completed(process_id or "custom", run_id, duration_ms)
            logger.info(
                f"Process intelligence analysis complete in {duration_ms}ms",
                extra_fields={"completed": list(phases), "failed": [e["phase"] for e in errors]},
            )

        recommendations = generate_recommendations(phases)
        return ProcessIntelligenceReport(
            run_id=run_id,
            process_id=process_id,
            reference_model_name=model.name if model is not None else None,
            event_log_summary=log.get_summary(),
            phases=phases,
            phase_durations=durations,
            recommendations=recommendations,
            executive_summary=build_executive_summary(log, phases, process_id, model, recommendations, errors),
            errors=errors,
            skipped=skipped,
            duration_ms=duration_ms,
            timestamp=format_timestamp(datetime.now(timezone.utc)),
        )

    def analyze_process(self, log: EventLog, process_id: str) -> ProcessIntelligenceReport:
        return self.analyze(log, process_id=process_id)

    @staticmethod
    def _run_phase(
        phase: str,
        call: Callable[[], Any],
        phases: Dict[str, Any],
        durations: Dict[str, float],
        errors: List[Dict[str, str]],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        with with_correlation(phase=phase):
            log_phase_start("process_mining", phase)
            started = time.monotonic()
            try:
                result = call()
            except Exception as e:
                message = str(e) or type(e).__name__
                log_phase_error("process_mining", phase, message, error_type=type(e).__name__)
                record_phase_failed(phase, message)
                errors.append({"phase": phase, "message": message})
                return

            duration_ms = round((time.monotonic() - started) * 1000, 2)
            phases[phase] = result
            durations[phase] = duration_ms
            log_phase_complete("process_mining", phase, duration_ms)
            record_phase_completed(phase, duration_ms)

        if on_progress is not None:
            on_progress(phase, result)


def analyze_process(log: EventLog, process_id: str) -> ProcessIntelligenceReport:
    """Run the full analysis against a built-in reference process."""
    return ProcessIntelligenceEngine().analyze_process(log, process_id)


# =============================================================================
# Recommendations
# =============================================================================

def _recommendation(category: str, severity: str, title: str, description: str, evidence: str) -> Dict[str, str]:
    return {
        "category": category,
        "severity": severity,
        "title": title,
        "description": description,
        "evidence": evidence,
    }


def generate_recommendations(phases: Dict[str, Any]) -> List[Dict[str, str]]:
    """Rule-based findings from completed phases, sorted high -> medium -> low."""
    recommendations: List[Dict[str, str]] = []

    variants = phases.get("variants")
    if variants is not None:
        count = variants.total_variant_count
        if count > 20:
            coverage = variants.happy_path.percentage if variants.happy_path else 0
            recommendations.append(_recommendation(
                "standardization",
                "high" if count > 50 else "medium",
                "High process variation detected",
                f"{count} unique variants found. The top variant covers only {round(coverage)}% of cases. "
                f"Consider standardizing the process.",
                f"{count} variants across {variants.total_case_count} cases",
            ))
        rework_rate = variants.rework["reworkRate"]
        if rework_rate > 0.15:
            top = ", ".join(a["activity"] for a in variants.rework["topReworkActivities"][:3])
            recommendations.append(_recommendation(
                "quality",
                "high" if rework_rate > 0.3 else "medium",
                "Significant rework detected",
                f"{round(rework_rate * 100)}% of cases contain rework (repeated activities). "
                f"Top rework activities: {top}.",
                f"Rework rate: {round(rework_rate * 100)}%",
            ))

    conformance = phases.get("conformance")
    if conformance is not None:
        stats = conformance.deviation_stats
        if conformance.fitness < 0.8:
            by_type = stats["byType"]
            top_type = max(by_type, key=by_type.get) if stats["totalDeviations"] else "none"
            recommendations.append(_recommendation(
                "compliance",
                "high",
                "Low process fitness",
                f"Process fitness is {conformance.fitness} (target: >= 0.90). {stats['totalDeviations']} deviations "
                f"detected across {stats['casesWithDeviations']} cases. Top deviation type: {top_type}.",
                f"Fitness: {conformance.fitness}, Deviations: {stats['totalDeviations']}",
            ))
        if conformance.conformance_rate < 50:
            recommendations.append(_recommendation(
                "compliance",
                "high",
                "Majority of cases non-conformant",
                f"Only {conformance.conformance_rate}% of cases are fully conformant with the reference model.",
                f"{conformance.fully_conformant_cases}/{conformance.total_cases} conformant",
            ))

    performance = phases.get("performance")
    if performance is not None:
        if performance.bottlenecks:
            top = performance.bottlenecks[0]
            recommendations.append(_recommendation(
                "efficiency",
                "medium",
                "Bottleneck identified",
                f'Top bottleneck: "{top["from"]}" -> "{top["to"]}". Median wait time: '
                f'{format_duration(top["medianDuration"])}. Impact score: {top["impact"]}.',
                f"Bottleneck impact: {top['impact']}",
            ))
        breached = performance.sla_breaches
        if breached:
            recommendations.append(_recommendation(
                "sla",
                "high",
                "SLA breaches detected",
                f"{len(breached)} SLA target(s) breached. Immediate attention required.",
                ", ".join(s["sla"] for s in breached),
            ))
        at_risk = [s for s in performance.sla_compliance if s["status"] == "at-risk"]
        if at_risk:
            recommendations.append(_recommendation(
                "sla",
                "low",
                "SLA targets at risk",
                f"{len(at_risk)} SLA target(s) are within 20% of their bound.",
                ", ".join(s["sla"] for s in at_risk),
            ))

    social = phases.get("social")
    if social is not None:
        sod = social.sod_violations
        if sod["totalViolations"] > 0:
            recommendations.append(_recommendation(
                "compliance",
                "high",
                "Segregation of duties violations",
                f"{sod['totalViolations']} SoD violations found across {sod['rulesViolated']} rules. "
                f"This is an audit risk.",
                f"{sod['totalViolations']} violations in {sod['rulesViolated']}/{sod['rulesChecked']} rules",
            ))
        workload = social.workload
        if not workload["isBalanced"]:
            recommendations.append(_recommendation(
                "resource",
                "medium",
                "Unbalanced workload distribution",
                f"Workload coefficient of variation: {workload['coefficientOfVariation']}. "
                f"Work is not evenly distributed across resources.",
                f"CV: {workload['coefficientOfVariation']}",
            ))

    # sorted() is stable, so equal severities keep rule order
    return sorted(recommendations, key=lambda r: SEVERITY_ORDER.get(r["severity"], 2))


# =============================================================================
# Executive Summary
# =============================================================================

def _overall_health(recommendations: List[Dict[str, str]], errors: List[Dict[str, str]]) -> str:
    if any(r["severity"] == "high" for r in recommendations):
        return "critical"
    if recommendations or errors:
        return "needs-attention"
    return "healthy"


def build_executive_summary(
    log: EventLog,
    phases: Dict[str, Any],
    process_id: Optional[str],
    model: Optional[ReferenceModel],
    recommendations: List[Dict[str, str]],
    errors: List[Dict[str, str]],
) -> Dict[str, Any]:
    start, end = log.get_time_range()
    summary: Dict[str, Any] = {
        "process": process_id or "Custom",
        "scope": {
            "process": process_id or "Custom",
            "referenceModel": model.name if model is not None else None,
            "cases": log.get_case_count(),
            "events": log.get_event_count(),
            "activities": len(log.get_activity_set()),
            "resources": len(log.get_resource_set()),
            "timeRange": {
                "start": format_timestamp(start) if start else None,
                "end": format_timestamp(end) if end else None,
            },
        },
        "findings": {},
    }
    findings = summary["findings"]

    variants = phases.get("variants")
    if variants is not None:
        findings["variants"] = {
            "total": variants.total_variant_count,
            "happyPathCoverage": round(variants.happy_path.percentage) if variants.happy_path else None,
            "reworkRate": round(variants.rework["reworkRate"] * 100),
        }

    discovered = phases.get("discovery")
    if discovered is not None:
        findings["discoveredModel"] = {
            "activities": len(discovered.activities),
            "edges": len(discovered.edges),
            "loops": len(discovered.loops_l1) + len(discovered.loops_l2),
            "gateways": len(discovered.gateways),
        }

    conformance = phases.get("conformance")
    if conformance is not None:
        findings["conformance"] = {
            "fitness": conformance.fitness,
            "precision": conformance.precision,
            "conformanceRate": conformance.conformance_rate,
        }

    performance = phases.get("performance")
    if performance is not None:
        stats = performance.case_durations["stats"]
        top = performance.bottlenecks[0] if performance.bottlenecks else None
        findings["performance"] = {
            "bottleneckCount": len(performance.bottlenecks),
            "topBottleneck": top["transition"] if top else None,
            "medianCycleTime": format_duration(stats["median"]) if stats["count"] else format_duration(None),
            "p90CycleTime": format_duration(stats["p90"]) if stats["count"] else format_duration(None),
            "slaBreaches": len(performance.sla_breaches),
        }

    social = phases.get("social")
    if social is not None:
        findings["organization"] = {
            "resourceCount": social.resource_count,
            "workloadBalanced": social.workload["isBalanced"],
            "sodViolations": social.sod_violations["totalViolations"],
            "mostCentralResource": social.centrality[0]["resource"] if social.centrality else None,
        }

    kpis = phases.get("kpis")
    if kpis is not None:
        cycle = kpis.get_kpi("cycleTime")
        happy = kpis.get_kpi("happyPathRate")
        throughput = kpis.get_kpi("throughput")
        findings["kpiHighlights"] = {
            "cycleTime": format_duration(cycle.value) if cycle else format_duration(None),
            "happyPathRate": happy.value if happy else None,
            "throughput": throughput.value if throughput else None,
        }

    summary["overallHealth"] = _overall_health(recommendations, errors)
    summary["failedPhases"] = [e["phase"] for e in errors if e["phase"] != "cancelled"]
    return summary
