"""
Metrics Collection for the Migration Toolkit

Collects and exposes metrics for:
- Process-intelligence runs (started, completed, cancelled)
- Analyzer phases (completed, failed, skipped)
- Migration object runs by final status
- Approval decisions
- Processing times (average, p95)

Metrics are kept in memory. When METRICS_DB_PATH is configured, every
recorded event is also persisted to a SQLite table for durability.
"""

import json
import sqlite3
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Any

from core.observability.logging import get_logger


logger = get_logger(__name__)


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class RunMetrics:
    """Metrics for process-intelligence runs."""
    started: int = 0
    completed: int = 0
    cancelled: int = 0
    in_progress: int = 0

    # By process id
    by_process: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "cancelled": 0})
    )


@dataclass
class PhaseMetrics:
    """Metrics for analyzer phase execution."""
    completed: int = 0
    failed: int = 0
    skipped: int = 0

    # By phase name
    by_name: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"completed": 0, "failed": 0, "skipped": 0})
    )


@dataclass
class MigrationMetrics:
    """Metrics for migration object runs."""
    runs: int = 0
    records_loaded: int = 0
    load_errors: int = 0

    # Final status counts, e.g. {"completed": 3, "validation_failed": 1}
    by_status: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        """Get average processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_run_started("O2C", run_id)
        metrics.record_phase_completed("variants", duration_ms=12.5)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self, db_path: Optional[Path] = None):
        self.runs = RunMetrics()
        self.phases = PhaseMetrics()
        self.migrations = MigrationMetrics()
        self.approvals: Dict[str, int] = defaultdict(int)
        self.timings = TimingMetrics()
        self._lock = Lock()
        self._db_path = Path(db_path) if db_path else None

        if self._db_path is not None:
            self._init_db()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    from core.config import get_settings
                    cls._instance = cls(db_path=get_settings().metrics_db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Discard the singleton (tests)."""
        with cls._lock:
            cls._instance = None

    def _init_db(self):
        """Initialize metrics table in database."""
        try:
            conn = sqlite3.connect(str(self._db_path))
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS metrics_snapshots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        metric_type TEXT NOT NULL,
                        metric_name TEXT NOT NULL,
                        metric_value REAL NOT NULL,
                        labels TEXT
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_metrics_type_time
                    ON metrics_snapshots(metric_type, timestamp)
                """)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(
                "Metrics persistence disabled",
                extra_fields={"db_path": str(self._db_path), "error": str(e)},
            )
            self._db_path = None

    # =========================================================================
    # Run Metrics
    # =========================================================================

    def record_run_started(self, process_id: str, run_id: str):
        """Record an analysis run start."""
        with self._lock:
            self.runs.started += 1
            self.runs.in_progress += 1
            self.runs.by_process[process_id]["started"] += 1

        self._persist_metric("run", "started", 1, {"process": process_id, "run_id": run_id})

    def record_run_completed(self, process_id: str, run_id: str, duration_ms: float = None):
        """Record an analysis run completion."""
        with self._lock:
            self.runs.completed += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.by_process[process_id]["completed"] += 1
            if duration_ms:
                self.timings.add_sample(duration_ms, f"run.{process_id}")

        self._persist_metric("run", "completed", 1, {"process": process_id, "run_id": run_id})

    def record_run_cancelled(self, process_id: str, run_id: str):
        """Record an analysis run cancelled between phases."""
        with self._lock:
            self.runs.cancelled += 1
            self.runs.in_progress = max(0, self.runs.in_progress - 1)
            self.runs.by_process[process_id]["cancelled"] += 1

        self._persist_metric("run", "cancelled", 1, {"process": process_id, "run_id": run_id})

    # =========================================================================
    # Phase Metrics
    # =========================================================================

    def record_phase_completed(self, phase: str, duration_ms: float = None):
        """Record an analyzer phase completion."""
        with self._lock:
            self.phases.completed += 1
            self.phases.by_name[phase]["completed"] += 1
            if duration_ms:
                self.timings.add_sample(duration_ms, f"phase.{phase}")

    def record_phase_failed(self, phase: str, error: str = None):
        """Record an analyzer phase failure."""
        with self._lock:
            self.phases.failed += 1
            self.phases.by_name[phase]["failed"] += 1

        self._persist_metric("phase", "failed", 1, {"phase": phase, "error": error})

    def record_phase_skipped(self, phase: str):
        """Record a deliberately skipped phase."""
        with self._lock:
            self.phases.skipped += 1
            self.phases.by_name[phase]["skipped"] += 1

    # =========================================================================
    # Migration / Approval Metrics
    # =========================================================================

    def record_migration_run(self, object_id: str, status: str, loaded: int = 0, errors: int = 0,
                             duration_ms: float = None):
        """Record a finished migration object run."""
        with self._lock:
            self.migrations.runs += 1
            self.migrations.by_status[status] += 1
            self.migrations.records_loaded += loaded
            self.migrations.load_errors += errors
            if duration_ms:
                self.timings.add_sample(duration_ms, f"migration.{object_id}")

        self._persist_metric("migration", status, 1, {"object_id": object_id, "loaded": loaded})

    def record_approval_decision(self, status: str):
        """Record an approval request reaching a status."""
        with self._lock:
            self.approvals[status] += 1

        self._persist_metric("approval", status, 1)

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "runs": {
                    "started": self.runs.started,
                    "completed": self.runs.completed,
                    "cancelled": self.runs.cancelled,
                    "in_progress": self.runs.in_progress,
                    "by_process": {k: dict(v) for k, v in self.runs.by_process.items()},
                },
                "phases": {
                    "completed": self.phases.completed,
                    "failed": self.phases.failed,
                    "skipped": self.phases.skipped,
                    "by_name": {k: dict(v) for k, v in self.phases.by_name.items()},
                },
                "migrations": {
                    "runs": self.migrations.runs,
                    "records_loaded": self.migrations.records_loaded,
                    "load_errors": self.migrations.load_errors,
                    "by_status": dict(self.migrations.by_status),
                },
                "approvals": dict(self.approvals),
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist_metric(self, metric_type: str, metric_name: str, value: float, labels: Dict = None):
        """Persist a metric to the database, if one is configured."""
        if self._db_path is None:
            return
        try:
            conn = sqlite3.connect(str(self._db_path))
            try:
                conn.execute("""
                    INSERT INTO metrics_snapshots (timestamp, metric_type, metric_name, metric_value, labels)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    datetime.utcnow().isoformat(),
                    metric_type,
                    metric_name,
                    value,
                    json.dumps(labels, default=str) if labels else None,
                ))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(
                "Failed to persist metric",
                extra_fields={"metric_type": metric_type, "metric_name": metric_name, "error": str(e)},
            )


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_run_started(process_id: str, run_id: str):
    """Record an analysis run start."""
    get_metrics().record_run_started(process_id, run_id)


def record_run_completed(process_id: str, run_id: str, duration_ms: float = None):
    """Record an analysis run completion."""
    get_metrics().record_run_completed(process_id, run_id, duration_ms)


def record_run_cancelled(process_id: str, run_id: str):
    """Record a cancelled analysis run."""
    get_metrics().record_run_cancelled(process_id, run_id)


def record_phase_completed(phase: str, duration_ms: float = None):
    """Record an analyzer phase completion."""
    get_metrics().record_phase_completed(phase, duration_ms)


def record_phase_failed(phase: str, error: str = None):
    """Record an analyzer phase failure."""
    get_metrics().record_phase_failed(phase, error)


def record_phase_skipped(phase: str):
    """Record a skipped analyzer phase."""
    get_metrics().record_phase_skipped(phase)


def record_migration_run(object_id: str, status: str, loaded: int = 0, errors: int = 0,
                         duration_ms: float = None):
    """Record a finished migration object run."""
    get_metrics().record_migration_run(object_id, status, loaded, errors, duration_ms)


def record_approval_decision(status: str):
    """Record an approval status change."""
    get_metrics().record_approval_decision(status)


def record_processing_time(stage: str, duration_ms: float):
    """Record a processing time sample."""
    get_metrics().record_processing_time(stage, duration_ms)
