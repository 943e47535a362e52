"""
Observability Validation Test

This test validates the observability stack:
1. Metrics collection works (run/phase/migration/approval/timing metrics)
2. Analysis runs and migration runs feed the collector
3. Structured logging with correlation IDs works
4. Metrics persist to SQLite when a database is configured

Pass criteria: From one analysis run, every phase outcome is counted and
every log line carries the run and phase it belongs to.
"""

import json
import logging
import sqlite3

import pytest


def test_observability_imports():
    """Verify all observability modules import correctly."""
    from core.observability import (
        MetricsCollector, get_metrics,
        record_run_started, record_run_completed, record_run_cancelled,
        record_phase_completed, record_phase_failed, record_phase_skipped,
        record_migration_run, record_approval_decision, record_processing_time,
        get_logger, configure_logging, CorrelationContext, with_correlation,
    )
    assert MetricsCollector is not None
    assert get_metrics is not None
    assert CorrelationContext is not None


class TestMetricsCollector:
    """Test the metrics collection system."""

    def test_singleton_instance(self):
        """MetricsCollector returns same instance until reset."""
        from core.observability.metrics import MetricsCollector
        m1 = MetricsCollector.instance()
        m2 = MetricsCollector.instance()
        assert m1 is m2

        MetricsCollector.reset_instance()
        assert MetricsCollector.instance() is not m1

    def test_run_metrics_tracking(self):
        """Track run started/completed/cancelled counts."""
        from core.observability.metrics import (
            get_metrics, record_run_cancelled, record_run_completed, record_run_started,
        )
        record_run_started("O2C", "run-1")
        record_run_started("O2C", "run-2")
        record_run_started("P2P", "run-3")
        record_run_completed("O2C", "run-1", duration_ms=120.0)
        record_run_cancelled("P2P", "run-3")

        runs = get_metrics().get_summary()["runs"]
        assert runs["started"] == 3
        assert runs["completed"] == 1
        assert runs["cancelled"] == 1
        assert runs["in_progress"] == 1
        assert runs["by_process"]["O2C"] == {"started": 2, "completed": 1, "cancelled": 0}
        assert runs["by_process"]["P2P"]["cancelled"] == 1

    def test_in_progress_never_negative(self):
        from core.observability.metrics import get_metrics, record_run_completed
        record_run_completed("O2C", "orphan")
        assert get_metrics().get_summary()["runs"]["in_progress"] == 0

    def test_phase_and_approval_counts(self):
        from core.observability.metrics import (
            get_metrics, record_approval_decision, record_phase_completed,
            record_phase_failed, record_phase_skipped,
        )
        record_phase_completed("variants", duration_ms=4.0)
        record_phase_failed("conformance", "activities is null")
        record_phase_skipped("social")
        record_approval_decision("pending")
        record_approval_decision("pending")
        record_approval_decision("approved")

        summary = get_metrics().get_summary()
        assert summary["phases"]["completed"] == 1
        assert summary["phases"]["failed"] == 1
        assert summary["phases"]["skipped"] == 1
        assert summary["phases"]["by_name"]["conformance"]["failed"] == 1
        assert summary["approvals"] == {"pending": 2, "approved": 1}
        assert "phase.variants" in summary["timings"]["by_stage"]

    def test_timing_percentile_calculation(self):
        """Calculate p95 timing correctly."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        # Add 100 samples: 1-100ms
        for i in range(1, 101):
            mc.record_processing_time("kpi.bootstrap", i)

        stats = mc.get_timing_stats("kpi.bootstrap")
        assert stats["average_ms"] == 50.5
        assert stats["p95_ms"] == 96
        assert stats["sample_count"] == 100
        assert mc.get_timing_stats("never.seen") == {"average_ms": 0.0, "p95_ms": 0.0, "sample_count": 0}

    def test_samples_are_bounded(self):
        from core.observability.metrics import TimingMetrics
        timings = TimingMetrics(max_samples=5)
        for i in range(12):
            timings.add_sample(float(i), "stage")
        assert timings.samples == [7.0, 8.0, 9.0, 10.0, 11.0]
        assert len(timings.by_stage["stage"]) == 5


class TestPipelineMetrics:
    """Analysis and migration runs report into the collector."""

    def test_analysis_run_counts_every_phase(self, o2c_log):
        from core.observability.metrics import get_metrics
        from process_mining.engine import ProcessIntelligenceEngine
        ProcessIntelligenceEngine(kpi_seed=1).analyze(o2c_log, process_id="O2C", skip=["social"])

        summary = get_metrics().get_summary()
        assert summary["runs"]["by_process"]["O2C"]["completed"] == 1
        assert summary["phases"]["completed"] == 5
        assert summary["phases"]["skipped"] == 1
        assert summary["phases"]["by_name"]["social"]["skipped"] == 1

    def test_failed_phase_counted(self, o2c_log):
        from core.observability.metrics import get_metrics
        from process_mining.engine import ProcessIntelligenceEngine
        ProcessIntelligenceEngine(kpi_seed=1).analyze(o2c_log, reference_model={"activities": None, "edges": None})

        phases = get_metrics().get_summary()["phases"]
        assert phases["failed"] == 1
        assert phases["by_name"]["conformance"] == {"completed": 0, "failed": 1, "skipped": 0}

    def test_cancelled_run_not_completed(self, o2c_log):
        from core.observability.metrics import get_metrics
        from process_mining.engine import CancellationToken, ProcessIntelligenceEngine
        token = CancellationToken()
        token.cancel()
        ProcessIntelligenceEngine().analyze(o2c_log, cancellation=token)

        runs = get_metrics().get_summary()["runs"]
        assert runs["cancelled"] == 1
        assert runs["completed"] == 0
        assert runs["by_process"]["custom"]["cancelled"] == 1

    def test_migration_run_recorded(self):
        from core.observability.metrics import get_metrics
        from migration.objects import build_business_partner
        build_business_partner().run()

        migrations = get_metrics().get_summary()["migrations"]
        assert migrations["runs"] == 1
        assert migrations["by_status"] == {"completed_with_errors": 1}
        assert migrations["records_loaded"] == 78
        assert migrations["load_errors"] == 1
        assert get_metrics().get_timing_stats("migration.BUSINESS_PARTNER")["sample_count"] >= 1

    def test_approval_lifecycle_recorded(self):
        from core.observability.metrics import get_metrics
        from core.security.approval import ApprovalGate
        gate = ApprovalGate()
        request = gate.request_approval("migration.load_staging", "u1")
        gate.approve(request.request_id, "u2")

        assert get_metrics().get_summary()["approvals"] == {"pending": 1, "approved": 1}


class TestCorrelatedLogging:
    """Test structured logging with correlation IDs."""

    def test_correlation_context_creation(self):
        """Create correlation context and drop unset fields."""
        from core.observability.logging import CorrelationContext
        ctx = CorrelationContext(run_id="run-123", process_id="O2C", phase="variants")
        assert ctx.to_dict() == {"run_id": "run-123", "process_id": "O2C", "phase": "variants"}

        merged = ctx.merge(phase="discovery", object_id=None)
        assert merged.phase == "discovery"
        assert merged.run_id == "run-123"
        assert ctx.phase == "variants"

    def test_context_nesting_and_restore(self):
        """Nested contexts inherit outer values and restore on exit."""
        from core.observability.logging import get_correlation_context, with_correlation
        assert get_correlation_context().run_id is None

        with with_correlation(run_id="run-1", process_id="O2C"):
            with with_correlation(phase="kpis") as inner:
                assert inner.run_id == "run-1"
                assert inner.phase == "kpis"
            assert get_correlation_context().phase is None
            assert get_correlation_context().run_id == "run-1"

        assert get_correlation_context().to_dict() == {}

    def test_set_correlation_context(self):
        """Set a context directly and clear it again."""
        from core.observability.logging import (
            CorrelationContext,
            get_correlation_context,
            set_correlation_context,
        )
        set_correlation_context(CorrelationContext(run_id="run-9"))
        try:
            assert get_correlation_context().run_id == "run-9"
        finally:
            set_correlation_context(CorrelationContext())
        assert get_correlation_context().run_id is None

    def test_structured_formatter_json_output(self):
        """StructuredFormatter outputs valid JSON with context and extra fields."""
        from core.observability.logging import StructuredFormatter, with_correlation
        formatter = StructuredFormatter()

        with with_correlation(run_id="run-9", object_id="GL_BALANCE"):
            record = logging.LogRecord(
                name="migration",
                level=logging.INFO,
                pathname="lifecycle.py",
                lineno=10,
                msg="Loaded %d records",
                args=(40,),
                exc_info=None,
            )
            record.extra_fields = {"duration_ms": 12.5}
            data = json.loads(formatter.format(record))

        assert data["message"] == "Loaded 40 records"
        assert data["level"] == "INFO"
        assert data["run_id"] == "run-9"
        assert data["object_id"] == "GL_BALANCE"
        assert data["duration_ms"] == 12.5
        assert data["timestamp"].endswith("Z")

    def test_human_readable_formatter(self):
        from core.observability.logging import HumanReadableFormatter, with_correlation
        formatter = HumanReadableFormatter()
        record = logging.LogRecord("process_mining.engine", logging.WARNING, "engine.py", 1,
                                   "Phase failed", (), None)
        record.extra_fields = {"error_type": "ValueError"}

        with with_correlation(run_id="run-abc", process_id="O2C", phase="conformance"):
            line = formatter.format(record)

        assert "[run-abc/O2C/conformance]" in line
        assert "[WARNING]" in line
        assert line.endswith("error_type=ValueError")

    def test_correlated_logger_attaches_extra_fields(self):
        from core.observability.logging import get_logger

        class Capture(logging.Handler):
            def __init__(self):
                super().__init__()
                self.records = []

            def emit(self, record):
                self.records.append(record)

        logger = get_logger("test.observability.capture")
        handler = Capture()
        underlying = logging.getLogger("test.observability.capture")
        underlying.addHandler(handler)
        underlying.setLevel(logging.DEBUG)
        try:
            logger.info("Mined %s edges", 7, extra_fields={"threshold": 0.9})
        finally:
            underlying.removeHandler(handler)

        assert handler.records[0].getMessage() == "Mined 7 edges"
        assert handler.records[0].extra_fields == {"threshold": 0.9}
        assert get_logger("test.observability.capture") is logger


class TestMetricsPersistence:
    """Metrics written to SQLite when a database path is configured."""

    def test_events_persisted(self, tmp_path):
        from core.observability.metrics import MetricsCollector
        db_path = tmp_path / "metrics.db"
        mc = MetricsCollector(db_path=db_path)
        mc.record_run_started("O2C", "run-1")
        mc.record_migration_run("GL_BALANCE", "completed", loaded=40)
        mc.record_approval_decision("rejected")

        conn = sqlite3.connect(str(db_path))
        try:
            rows = conn.execute(
                "SELECT metric_type, metric_name, labels FROM metrics_snapshots ORDER BY id"
            ).fetchall()
        finally:
            conn.close()

        assert [(r[0], r[1]) for r in rows] == [
            ("run", "started"), ("migration", "completed"), ("approval", "rejected"),
        ]
        assert json.loads(rows[1][2]) == {"object_id": "GL_BALANCE", "loaded": 40}

    def test_in_memory_without_database(self):
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector()
        mc.record_run_started("O2C", "run-1")
        assert mc.get_summary()["runs"]["started"] == 1


def test_observability_summary():
    """Summary exposes every metric family."""
    from core.observability.metrics import get_metrics
    summary = get_metrics().get_summary()
    assert set(summary) == {"runs", "phases", "migrations", "approvals", "timings"}
    assert set(summary["timings"]["overall"]) == {"average_ms", "p95_ms"}


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self):
        from core.config import get_settings
        settings = get_settings()
        assert settings.kpi_bootstrap_iterations == 1000
        assert settings.mock_load_error_rate == 0.02
        assert settings.audit_log_path is None
        assert get_settings() is settings

    def test_environment_overrides(self, monkeypatch, tmp_path):
        from core.config import get_settings, reset_settings
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_JSON", "yes")
        monkeypatch.setenv("APPROVAL_TTL_HOURS", "2")
        monkeypatch.setenv("AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
        reset_settings()

        settings = get_settings()
        assert settings.log_level == "DEBUG"
        assert settings.log_json is True
        assert settings.approval_ttl_hours == 2.0
        assert settings.to_dict()["audit_log_path"] == str(tmp_path / "audit.jsonl")

    def test_invalid_number_raises(self, monkeypatch):
        from core.config import get_settings, reset_settings
        monkeypatch.setenv("FUZZY_DUPLICATE_CAP", "lots")
        reset_settings()
        with pytest.raises(ValueError):
            get_settings()

    def test_audit_path_selects_json_lines_backend(self, monkeypatch, tmp_path):
        from api.state import get_state, reset_state
        from core.audit.events import JSONLinesAuditBackend
        from core.config import reset_settings
        monkeypatch.setenv("AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
        reset_settings()
        reset_state()

        state = get_state()
        assert isinstance(state.audit_logger.backends[0], JSONLinesAuditBackend)
        assert state.approval_gate.expiration.total_seconds() == 24 * 3600
