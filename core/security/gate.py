"""Operation gate: permission check, approval check, execution and audit.

Composes the tier manager, approval gate and audit logger around one
callable. Denials are returned as ``GateDecision`` values; only the
action's own exceptions propagate (after being audited).

Dry runs are still permission-checked and audited. They skip the
approval requirement because the action is told not to write.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from core.audit.events import AuditEventType, AuditLogger
from core.models.refs import AuditOutcome
from core.observability.logging import get_logger, with_correlation
from core.security.approval import ApprovalGate, ApprovalNotFoundError, ApprovalStatus
from core.security.tiers import TierManager, UserContext


logger = get_logger(__name__)


class GateStatus(str, Enum):
    EXECUTED = "executed"
    DRY_RUN = "dry_run"
    DENIED = "denied"
    APPROVAL_REQUIRED = "approval_required"


@dataclass
class GateDecision:
    """What the gate did with one operation request."""
    operation: str
    status: GateStatus
    tier: int
    tier_label: str
    reason: str
    actor: str
    approval_id: Optional[str] = None
    result: Any = None
    duration_ms: Optional[float] = None

    @property
    def allowed(self) -> bool:
        return self.status in (GateStatus.EXECUTED, GateStatus.DRY_RUN)

    def to_dict(self) -> Dict[str, Any]:
        result = self.result.to_dict() if hasattr(self.result, "to_dict") else self.result
        return {
            "operation": self.operation,
            "allowed": self.allowed,
            "status": self.status.value,
            "tier": self.tier,
            "tierLabel": self.tier_label,
            "reason": self.reason,
            "actor": self.actor,
            "approvalId": self.approval_id,
            "durationMs": self.duration_ms,
            "result": result,
        }


class OperationGate:
    """Runs an action only when tier policy and approvals allow it."""

    def __init__(
        self,
        tier_manager: Optional[TierManager] = None,
        approval_gate: Optional[ApprovalGate] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.tier_manager = tier_manager or TierManager()
        self.approval_gate = approval_gate or ApprovalGate(self.tier_manager)
        self.audit_logger = audit_logger or AuditLogger()

    def _deny(self, operation: str, user: UserContext, tier: int, label: str, reason: str,
              status: GateStatus, approval_id: Optional[str] = None) -> GateDecision:
        logger.warning(
            f"Operation blocked: {operation} ({status.value})",
            extra_fields={"tier": tier, "reason": reason},
        )
        self.audit_logger.record(
            AuditEventType.PERMISSION_DENIED,
            actor=user.user_id,
            resource=operation,
            action="execute",
            outcome=AuditOutcome.DENIED,
            metadata={"tier": tier, "tierLabel": label, "reason": reason,
                      "status": status.value, "approvalId": approval_id},
        )
        return GateDecision(operation=operation, status=status, tier=tier, tier_label=label,
                            reason=reason, actor=user.user_id, approval_id=approval_id)

    def authorize(self, operation: str, user: UserContext, approval_id: Optional[str] = None,
                  dry_run: bool = False) -> Optional[GateDecision]:
        """Return a denial decision, or None when the operation may proceed."""
        permission = self.tier_manager.check_permission(operation, user)
        if not permission.allowed:
            return self._deny(operation, user, permission.tier, permission.tier_label,
                              permission.reason, GateStatus.DENIED)

        if dry_run or not self.tier_manager.requires_approval(operation):
            return None

        if not approval_id:
            return self._deny(operation, user, permission.tier, permission.tier_label,
                              f'Operation "{operation}" requires an approved request',
                              GateStatus.APPROVAL_REQUIRED)

        try:
            status = self.approval_gate.check_approval_status(approval_id)
        except ApprovalNotFoundError as e:
            return self._deny(operation, user, permission.tier, permission.tier_label,
                              str(e), GateStatus.APPROVAL_REQUIRED, approval_id)

        if status["operation"] != operation:
            return self._deny(operation, user, permission.tier, permission.tier_label,
                              f"Approval {approval_id} was granted for \"{status['operation']}\"",
                              GateStatus.DENIED, approval_id)
        if status["status"] != ApprovalStatus.APPROVED.value:
            return self._deny(operation, user, permission.tier, permission.tier_label,
                              f"Approval {approval_id} is {status['status']}",
                              GateStatus.APPROVAL_REQUIRED, approval_id)
        return None

    def execute(
        self,
        operation: str,
        user: UserContext,
        action: Callable[[bool], Any],
        approval_id: Optional[str] = None,
        dry_run: bool = False,
        details: Optional[Dict[str, Any]] = None,
        outcome_of: Optional[Callable[[Any], AuditOutcome]] = None,
    ) -> GateDecision:
        """Check policy, then call ``action(dry_run)`` and audit the execution.

        Args:
            operation: Catalogue operation id, e.g. ``migration.load_staging``
            user: Requesting user
            action: Called with the dry-run flag; its return value is kept
            approval_id: Approved request for tier-3+ operations
            dry_run: Skip the approval requirement; the action must not write
            details: Extra audit metadata
            outcome_of: Maps the action's return value to an audit outcome
        """
        with with_correlation(operation=operation, actor=user.user_id):
            denial = self.authorize(operation, user, approval_id, dry_run)
            if denial is not None:
                return denial

            tier = self.tier_manager.get_tier(operation)
            definition = self.tier_manager.get_tier_definition(operation)
            label = definition.label if definition else f"Tier {tier}"
            audit_details = dict(details or {})
            audit_details["dryRun"] = dry_run

            start = time.perf_counter()
            try:
                result = action(dry_run)
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                self.audit_logger.log_operation(
                    operation, tier, user.user_id, AuditOutcome.ERROR, tier_label=label,
                    duration_ms=duration_ms, approval_id=approval_id,
                    error=f"{type(e).__name__}: {e}", details=audit_details,
                )
                raise
            duration_ms = (time.perf_counter() - start) * 1000

            outcome = outcome_of(result) if outcome_of else AuditOutcome.SUCCESS
            self.audit_logger.log_operation(
                operation, tier, user.user_id, outcome, tier_label=label,
                duration_ms=duration_ms, approval_id=approval_id, details=audit_details,
            )
            logger.info(
                f"Operation executed: {operation}",
                extra_fields={"tier": tier, "dry_run": dry_run, "duration_ms": round(duration_ms, 2)},
            )

            return GateDecision(
                operation=operation,
                status=GateStatus.DRY_RUN if dry_run else GateStatus.EXECUTED,
                tier=tier,
                tier_label=label,
                reason="Dry run" if dry_run else "Permission granted",
                actor=user.user_id,
                approval_id=approval_id,
                result=result,
                duration_ms=duration_ms,
            )
