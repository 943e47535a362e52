"""
Observability Module

Provides:
- Structured logging with correlation IDs
- Metrics collection (analysis runs, phases, migrations, approvals, timings)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_run_started,
    record_run_completed,
    record_run_cancelled,
    record_phase_completed,
    record_phase_failed,
    record_phase_skipped,
    record_migration_run,
    record_approval_decision,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_run_started",
    "record_run_completed",
    "record_run_cancelled",
    "record_phase_completed",
    "record_phase_failed",
    "record_phase_skipped",
    "record_migration_run",
    "record_approval_decision",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
