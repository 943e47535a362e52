"""Process intelligence: event logs, reference models, analyzers, engine."""

from process_mining.event_log import Event, EventLog, LogIntegrityError, Trace
from process_mining.reference_models import (
    CASE_DURATION_KEY,
    ModelEdge,
    ReferenceModel,
    ReferenceModelInvalidError,
    ReferenceModelRegistry,
    SLATarget,
    get_default_registry,
)
from process_mining.variant_analyzer import VariantAnalyzer, VariantAnalysisResult
from process_mining.heuristic_miner import HeuristicMiner, ProcessModel
from process_mining.conformance_checker import ConformanceChecker, ConformanceResult
from process_mining.performance_analyzer import PerformanceAnalyzer, PerformanceResult
from process_mining.social_network_miner import DEFAULT_SOD_RULES, SocialNetworkMiner, SocialNetworkResult
from process_mining.kpi_engine import KPI, KPIEngine, KPIReport
from process_mining.engine import (
    PHASES,
    CancellationToken,
    ProcessIntelligenceEngine,
    ProcessIntelligenceReport,
    UnknownProcessError,
    analyze_process,
)

__all__ = [
    # Event log
    "Event",
    "EventLog",
    "LogIntegrityError",
    "Trace",
    # Reference models
    "CASE_DURATION_KEY",
    "ModelEdge",
    "ReferenceModel",
    "ReferenceModelInvalidError",
    "ReferenceModelRegistry",
    "SLATarget",
    "get_default_registry",
    # Analyzers
    "VariantAnalyzer",
    "VariantAnalysisResult",
    "HeuristicMiner",
    "ProcessModel",
    "ConformanceChecker",
    "ConformanceResult",
    "PerformanceAnalyzer",
    "PerformanceResult",
    "DEFAULT_SOD_RULES",
    "SocialNetworkMiner",
    "SocialNetworkResult",
    "KPI",
    "KPIEngine",
    "KPIReport",
    # Engine
    "PHASES",
    "CancellationToken",
    "ProcessIntelligenceEngine",
    "ProcessIntelligenceReport",
    "UnknownProcessError",
    "analyze_process",
]
