"""
Migration object ETLV lifecycle: Extract -> Transform -> Validate -> Load.

A MigrationObject is a plain description (id, name, field mappings,
quality checks) plus the collaborators that do the work. The phase logic
lives in LifecycleRunner, which owns the extractor, the mapping engine, the
quality checker and the loader.

Outcomes:
    completed              all records loaded
    completed_with_errors  load reported per-record errors
    validation_failed      an error-severity quality check blocked the load
    error                  extractor/loader I/O failed; message recorded

Usage:
    obj = build_business_partner()
    result = obj.run()
    print(result.status, result.stats)
"""

import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from core.audit.events import AuditEventType
from core.config import get_settings
from core.mapping.engine import FieldMapping, FieldMappingEngine, MappingSpec
from core.models.refs import AuditOutcome
from core.observability.logging import get_logger, log_migration_event, with_correlation
from core.observability.metrics import record_migration_run, record_processing_time
from core.security.gate import GateDecision, OperationGate
from core.security.tiers import UserContext
from core.storage.checkpoints import CheckpointStore
from migration.data_quality import DataQualityChecker, QualityChecks
from migration.extractors import Extractor, ExtractorError, Mode


logger = get_logger(__name__)

Records = List[Dict[str, Any]]


class MigrationStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    VALIDATION_FAILED = "validation_failed"
    ERROR = "error"


class LoaderError(Exception):
    """Raised when the target system rejects a load as a whole."""

    def __init__(self, message: str, object_id: Optional[str] = None):
        self.object_id = object_id
        super().__init__(message)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


# =============================================================================
# Loaders
# =============================================================================

class Loader(ABC):
    """Writes transformed records into the target system."""

    @abstractmethod
    def load(self, object_id: str, records: Records) -> Dict[str, Any]:
        """Load records; returns ``{status, recordCount, successCount, errorCount, ...}``.

        Raises:
            LoaderError: The target rejected the load as a whole
        """
        pass


class MockLoader(Loader):
    """Simulated target. A fixed share of records (default ~2%) fails.

    The failure count is ``int(len(records) * error_rate)``, truncated, so at
    the default rate objects under 50 records load without errors. Failed
    rows are picked with a seeded generator so runs repeat exactly.
    """

    def __init__(self, error_rate: Optional[float] = None, batch_size: int = 100, seed: int = 0):
        self.error_rate = error_rate if error_rate is not None else get_settings().mock_load_error_rate
        if not 0 <= self.error_rate <= 1:
            raise ValueError(f"error_rate must be in [0, 1], got {self.error_rate}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.seed = seed

    def load(self, object_id: str, records: Records) -> Dict[str, Any]:
        error_count = int(len(records) * self.error_rate)
        rng = random.Random(f"{self.seed}:{object_id}")
        failed_rows = sorted(rng.sample(range(len(records)), error_count)) if error_count else []
        return {
            "status": (MigrationStatus.COMPLETED_WITH_ERRORS if error_count else MigrationStatus.COMPLETED).value,
            "recordCount": len(records),
            "successCount": len(records) - error_count,
            "errorCount": error_count,
            "failedRows": failed_rows,
            "batches": -(-len(records) // self.batch_size),
            "batchSize": self.batch_size,
        }


# =============================================================================
# Run Result
# =============================================================================

@dataclass
class MigrationRunResult:
    object_id: str
    name: str
    status: MigrationStatus = MigrationStatus.COMPLETED
    phases: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def load_skipped(self) -> bool:
        return self.phases.get("load", {}).get("status") == "skipped"

    def to_dict(self, include_records: bool = False) -> Dict[str, Any]:
        phases = {}
        for name, phase in self.phases.items():
            phases[name] = phase if include_records else {k: v for k, v in phase.items() if k != "records"}
        result = {
            "objectId": self.object_id,
            "name": self.name,
            "status": self.status.value,
            "dryRun": self.dry_run,
            "phases": phases,
            "stats": self.stats,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


# =============================================================================
# Lifecycle Runner
# =============================================================================

class LifecycleRunner:
    """Executes the four ETLV phases for one migration object.

    Args:
        object_id: Migration object id, used for logging and checkpoints
        extractor: Source of raw records
        mappings: Field mapping definitions for the transform phase
        quality_checks: Checks for the validate phase
        loader: Target writer (defaults to MockLoader)
        entity: Record set to migrate; None concatenates all record sets
        mode: Extraction mode
        checkpoints: Optional checkpoint store handed to the extractor
        post_transform: Hook applied to the mapped records (e.g. role merge)
    """

    def __init__(
        self,
        object_id: str,
        extractor: Extractor,
        mappings: List[MappingSpec],
        quality_checks: Optional[QualityChecks] = None,
        loader: Optional[Loader] = None,
        entity: Optional[str] = None,
        mode: Union[Mode, str] = Mode.MOCK,
        checkpoints: Optional[CheckpointStore] = None,
        post_transform: Optional[Callable[[Records], Records]] = None,
    ):
        self.object_id = object_id
        self.extractor = extractor
        self.mapping_engine = FieldMappingEngine(mappings)
        self.quality_checks = quality_checks or QualityChecks()
        self.quality_checker = DataQualityChecker()
        self.loader = loader or MockLoader()
        self.entity = entity
        self.mode = Mode(mode)
        self.checkpoints = checkpoints
        self.post_transform = post_transform

    def extract(self) -> Dict[str, Any]:
        start = time.perf_counter()
        record_sets = self.extractor.extract(self.mode, checkpoints=self.checkpoints)
        if self.entity is not None:
            records = list(record_sets.get(self.entity, []))
        else:
            records = [r for rows in record_sets.values() for r in rows]
        return {
            "status": "completed",
            "mode": self.mode.value,
            "recordCount": len(records),
            "records": records,
            "durationMs": _elapsed_ms(start),
        }

    def transform(self, records: Records) -> Dict[str, Any]:
        start = time.perf_counter()
        self.mapping_engine.reset_stats()
        transformed = self.mapping_engine.apply_batch(records)
        result: Dict[str, Any] = {"status": "completed"}
        if self.post_transform is not None:
            merged = self.post_transform(transformed)
            result["mergedCount"] = len(transformed) - len(merged)
            transformed = merged
        result.update({
            "recordCount": len(transformed),
            "records": transformed,
            "mappingSummary": self.mapping_engine.get_summary(),
            "durationMs": _elapsed_ms(start),
        })
        return result

    def validate(self, records: Records) -> Dict[str, Any]:
        start = time.perf_counter()
        report = self.quality_checker.check(records, self.quality_checks)
        return {
            "status": "failed" if report.status == "errors" else "completed",
            "qualityStatus": report.status,
            "recordCount": len(records),
            "errorCount": len(report.errors),
            "warningCount": len(report.warnings),
            "checks": [c.to_dict() for c in report.checks],
            "durationMs": _elapsed_ms(start),
        }

    def load(self, records: Records) -> Dict[str, Any]:
        start = time.perf_counter()
        result = dict(self.loader.load(self.object_id, records))
        result["durationMs"] = _elapsed_ms(start)
        return result

    def run(self, name: str, dry_run: bool = False) -> MigrationRunResult:
        """Run E-T-V-L. I/O failures end the run with status ``error``."""
        start = time.perf_counter()
        result = MigrationRunResult(object_id=self.object_id, name=name, dry_run=dry_run)

        with with_correlation(object_id=self.object_id):
            log_migration_event(f"Running migration object: {name}", dry_run=dry_run, mode=self.mode.value)
            try:
                self._run_phases(result, dry_run)
            except (ExtractorError, LoaderError, OSError) as e:
                result.status = MigrationStatus.ERROR
                result.error = str(e)
                logger.error(f"Migration object {name} failed: {e}", extra_fields={"error_type": type(e).__name__})

            total_ms = _elapsed_ms(start)
            result.stats = self._build_stats(result, total_ms)
            record_migration_run(
                self.object_id, result.status.value,
                loaded=result.stats["loadedRecords"], errors=result.stats["loadErrors"], duration_ms=total_ms,
            )
            record_processing_time(f"migration.{self.object_id}", total_ms)
            log_migration_event(f"Migration object finished: {name}", status=result.status.value,
                                duration_ms=total_ms)
        return result

    def _run_phases(self, result: MigrationRunResult, dry_run: bool) -> None:
        extracted = self.extract()
        result.phases["extract"] = extracted
        if extracted["recordCount"] == 0:
            logger.info(f"No records to migrate for {result.name}")
            return

        transformed = self.transform(extracted["records"])
        result.phases["transform"] = transformed

        validated = self.validate(transformed["records"])
        result.phases["validate"] = validated

        if validated["status"] == "failed":
            result.status = MigrationStatus.VALIDATION_FAILED
            result.phases["load"] = {"status": "skipped", "reason": "Validation errors found"}
            logger.warning(f"Load skipped for {result.name}: validation errors")
            return
        if dry_run:
            result.phases["load"] = {"status": "skipped", "reason": "Dry run"}
            return

        loaded = self.load(transformed["records"])
        result.phases["load"] = loaded
        if loaded["status"] == MigrationStatus.COMPLETED_WITH_ERRORS.value:
            result.status = MigrationStatus.COMPLETED_WITH_ERRORS

    @staticmethod
    def _build_stats(result: MigrationRunResult, total_ms: float) -> Dict[str, Any]:
        phases = result.phases
        load = phases.get("load", {})
        return {
            "totalDurationMs": total_ms,
            "extractedRecords": phases.get("extract", {}).get("recordCount", 0),
            "transformedRecords": phases.get("transform", {}).get("recordCount", 0),
            "validationStatus": phases.get("validate", {}).get("qualityStatus", "n/a"),
            "loadedRecords": load.get("successCount", 0),
            "loadErrors": load.get("errorCount", 0),
        }


# =============================================================================
# Migration Object
# =============================================================================

class MigrationObject:
    """One migratable business object, e.g. Business Partner or GL Balance.

    Args:
        object_id: Stable id, e.g. ``BUSINESS_PARTNER``
        name: Display name
        field_mappings: Source -> target mapping definitions
        quality_checks: Checks for the validate phase (dict or QualityChecks)
        extractor: Source of raw records
        loader: Target writer (defaults to MockLoader)
        entity: Record set of the extractor to migrate
        mode: Extraction mode
        checkpoints: Optional checkpoint store
        post_transform: Hook applied after field mapping
        description: Free text
    """

    def __init__(
        self,
        object_id: str,
        name: str,
        field_mappings: List[MappingSpec],
        quality_checks: Union[QualityChecks, Dict[str, Any], None],
        extractor: Extractor,
        loader: Optional[Loader] = None,
        entity: Optional[str] = None,
        mode: Union[Mode, str] = Mode.MOCK,
        checkpoints: Optional[CheckpointStore] = None,
        post_transform: Optional[Callable[[Records], Records]] = None,
        description: str = "",
    ):
        self.object_id = object_id
        self.name = name
        self.description = description
        self._field_mappings = list(field_mappings)
        self._quality_checks = (
            quality_checks if isinstance(quality_checks, QualityChecks)
            else QualityChecks.model_validate(quality_checks or {})
        )
        self.runner = LifecycleRunner(
            object_id=object_id,
            extractor=extractor,
            mappings=self._field_mappings,
            quality_checks=self._quality_checks,
            loader=loader,
            entity=entity,
            mode=mode,
            checkpoints=checkpoints,
            post_transform=post_transform,
        )

    def get_field_mappings(self) -> List[FieldMapping]:
        return list(self.runner.mapping_engine.mappings)

    def get_quality_checks(self) -> QualityChecks:
        return self._quality_checks

    def extract(self) -> Dict[str, Any]:
        return self.runner.extract()

    def transform(self, records: Records) -> Dict[str, Any]:
        return self.runner.transform(records)

    def validate(self, records: Records) -> Dict[str, Any]:
        return self.runner.validate(records)

    def load(self, records: Records) -> Dict[str, Any]:
        return self.runner.load(records)

    def run(self, dry_run: bool = False) -> MigrationRunResult:
        return self.runner.run(self.name, dry_run=dry_run)

    def run_with_gate(
        self,
        gate: OperationGate,
        user: UserContext,
        operation: str = "migration.load_staging",
        approval_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> GateDecision:
        """Run through the operation gate (tier check, approval, audit).

        The migration start and its result are also written to the audit
        trail as migration events.
        """
        audit = gate.audit_logger

        def action(is_dry_run: bool) -> MigrationRunResult:
            audit.record(AuditEventType.MIGRATION_STARTED, actor=user.user_id, resource=self.object_id,
                         action="run", metadata={"operation": operation, "dryRun": is_dry_run})
            result = self.run(dry_run=is_dry_run)
            failed = result.status in (MigrationStatus.ERROR, MigrationStatus.VALIDATION_FAILED)
            audit.record(
                AuditEventType.MIGRATION_FAILED if failed else AuditEventType.MIGRATION_COMPLETED,
                actor=user.user_id, resource=self.object_id, action="run",
                outcome=AuditOutcome.FAILURE if failed else AuditOutcome.SUCCESS,
                metadata={"status": result.status.value, "stats": result.stats, "error": result.error},
            )
            return result

        return gate.execute(
            operation,
            user,
            action,
            approval_id=approval_id,
            dry_run=dry_run,
            details={"objectId": self.object_id},
            outcome_of=lambda r: (
                AuditOutcome.FAILURE
                if r.status in (MigrationStatus.ERROR, MigrationStatus.VALIDATION_FAILED)
                else AuditOutcome.SUCCESS
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objectId": self.object_id,
            "name": self.name,
            "description": self.description,
            "extractorId": self.runner.extractor.extractor_id,
            "fieldMappings": len(self._field_mappings),
            "qualityChecks": self._quality_checks.model_dump(by_alias=True, exclude_defaults=True),
        }
