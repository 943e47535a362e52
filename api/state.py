"""Process-wide service instances used by the API routes.

Built lazily from settings. Tests call ``reset_state()`` to start from a
clean in-memory audit trail and approval store.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

from core.audit.events import AuditLogger, InMemoryAuditBackend, JSONLinesAuditBackend
from core.config import get_settings
from core.observability.logging import get_logger
from core.security.approval import ApprovalGate
from core.security.gate import OperationGate
from core.security.tiers import TierManager
from core.storage.artifacts import ArtifactStore
from migration.lifecycle import MigrationObject
from migration.objects import build_migration_objects
from process_mining.engine import ProcessIntelligenceEngine


logger = get_logger(__name__)


@dataclass
class AppState:
    tier_manager: TierManager
    audit_logger: AuditLogger
    approval_gate: ApprovalGate
    operation_gate: OperationGate
    engine: ProcessIntelligenceEngine
    migration_objects: Dict[str, MigrationObject]
    artifacts: ArtifactStore


_state: Optional[AppState] = None


def build_state() -> AppState:
    settings = get_settings()

    if settings.audit_log_path:
        backend = JSONLinesAuditBackend(settings.audit_log_path)
        logger.info(f"Audit trail: {settings.audit_log_path}")
    else:
        backend = InMemoryAuditBackend()
        logger.info("Audit trail: in-memory (AUDIT_LOG_PATH not set)")
    audit_logger = AuditLogger([backend])

    tier_manager = TierManager()
    approval_gate = ApprovalGate(
        tier_manager,
        expiration=timedelta(hours=settings.approval_ttl_hours),
        audit_logger=audit_logger,
    )
    return AppState(
        tier_manager=tier_manager,
        audit_logger=audit_logger,
        approval_gate=approval_gate,
        operation_gate=OperationGate(tier_manager, approval_gate, audit_logger),
        engine=ProcessIntelligenceEngine(),
        migration_objects=build_migration_objects(),
        artifacts=ArtifactStore(settings.artifacts_dir),
    )


def get_state() -> AppState:
    global _state
    if _state is None:
        _state = build_state()
    return _state


def reset_state() -> None:
    global _state
    _state = None
