"""Approval gate for tier-3+ operations.

Requests move only from ``pending`` to one terminal status (approved,
rejected, cancelled, expired). Requesters cannot approve their own request,
and each approver counts once. Expiry is evaluated lazily whenever a
request is read or acted upon.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from core.audit.events import AuditEventType, AuditLogger
from core.models.refs import AuditOutcome
from core.observability.logging import get_logger
from core.observability.metrics import record_approval_decision
from core.security.tiers import TierManager


logger = get_logger(__name__)

DEFAULT_EXPIRATION = timedelta(hours=24)


# =============================================================================
# Errors
# =============================================================================

class ApprovalError(Exception):
    """Base error for approval operations."""

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.request_id = request_id


class ApprovalNotFoundError(ApprovalError):
    """No request with the given id."""
    pass


class SelfApprovalError(ApprovalError):
    """Requester tried to approve their own request."""
    pass


class DuplicateApprovalError(ApprovalError):
    """Approver already approved this request."""
    pass


class InvalidTransitionError(ApprovalError):
    """Request is not pending, or the actor may not perform the transition."""
    pass


# =============================================================================
# Models
# =============================================================================

class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ApprovalRequest:
    """A request for human sign-off on a gated operation."""
    request_id: Optional[str]
    operation: str
    tier: int
    requested_by: Optional[str]
    status: ApprovalStatus
    required_approvers: int = 0
    details: Dict[str, Any] = field(default_factory=dict)
    approvals: List[Dict[str, Any]] = field(default_factory=list)
    rejections: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    auto_approved: bool = False
    reason: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "requestId": self.request_id,
            "operation": self.operation,
            "tier": self.tier,
            "requestedBy": self.requested_by,
            "details": self.details,
            "requiredApprovers": self.required_approvers,
            "approvals": self.approvals,
            "rejections": self.rejections,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
            "resolvedAt": _iso(self.resolved_at),
        }
        if self.auto_approved:
            result["autoApproved"] = True
            result["reason"] = self.reason
        return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Gate
# =============================================================================

class ApprovalGate:
    """In-process approval store.

    Args:
        tier_manager: Classifies operations (tier, approvers needed)
        expiration: Time-to-live of a pending request (default 24h)
        audit_logger: Receives one entry per state change, if given
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        tier_manager: Optional[TierManager] = None,
        expiration: timedelta = DEFAULT_EXPIRATION,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tier_manager = tier_manager or TierManager()
        self.expiration = expiration
        self.audit_logger = audit_logger
        self._clock = clock
        self._requests: Dict[str, ApprovalRequest] = {}
        self._lock = Lock()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get(self, request_id: str) -> ApprovalRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise ApprovalNotFoundError(f"Approval request not found: {request_id}", request_id)
        return request

    def _expire_if_due(self, request: ApprovalRequest, now: datetime) -> None:
        if request.is_pending and now > request.expires_at:
            request.status = ApprovalStatus.EXPIRED
            request.resolved_at = now
            logger.info(f"Approval expired: {request.request_id}", extra_fields={"operation": request.operation})
            self._audit(AuditEventType.APPROVAL_EXPIRED, "system", request, "expire")
            record_approval_decision(ApprovalStatus.EXPIRED.value)

    def _require_pending(self, request: ApprovalRequest, verb: str) -> None:
        self._expire_if_due(request, self._clock())
        if not request.is_pending:
            raise InvalidTransitionError(
                f'Cannot {verb} request {request.request_id}: status is "{request.status.value}"',
                request.request_id,
            )

    def _audit(self, event: AuditEventType, actor: str, request: ApprovalRequest, action: str,
               outcome: AuditOutcome = AuditOutcome.SUCCESS, extra: Optional[Dict[str, Any]] = None) -> None:
        if self.audit_logger is None:
            return
        metadata = {
            "requestId": request.request_id,
            "tier": request.tier,
            "status": request.status.value,
            "approvalsReceived": len(request.approvals),
            "approvalsRequired": request.required_approvers,
        }
        metadata.update(extra or {})
        self.audit_logger.record(event, actor=actor, resource=request.operation,
                                 action=action, outcome=outcome, metadata=metadata)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def request_approval(self, operation: str, requested_by: str,
                         details: Optional[Dict[str, Any]] = None) -> ApprovalRequest:
        """Open a pending request, or auto-approve operations below tier 3."""
        tier = self.tier_manager.get_tier(operation)

        if not self.tier_manager.requires_approval(operation):
            return ApprovalRequest(
                request_id=None,
                operation=operation,
                tier=tier,
                requested_by=requested_by,
                status=ApprovalStatus.APPROVED,
                details=dict(details or {}),
                auto_approved=True,
                reason="Operation does not require approval",
            )

        now = self._clock()
        request = ApprovalRequest(
            request_id=f"apr-{uuid.uuid4().hex[:12]}",
            operation=operation,
            tier=tier,
            requested_by=requested_by,
            status=ApprovalStatus.PENDING,
            required_approvers=self.tier_manager.get_required_approvers(operation),
            details=copy.deepcopy(details or {}),
            created_at=now,
            expires_at=now + self.expiration,
        )

        with self._lock:
            self._requests[request.request_id] = request
            snapshot = copy.deepcopy(request)

        logger.info(
            f'Approval requested: {request.request_id} for "{operation}" by {requested_by}',
            extra_fields={"tier": tier, "required_approvers": request.required_approvers},
        )
        self._audit(AuditEventType.APPROVAL_REQUESTED, requested_by, request, "request")
        record_approval_decision(ApprovalStatus.PENDING.value)
        return snapshot

    def approve(self, request_id: str, approved_by: str, comment: Optional[str] = None) -> ApprovalRequest:
        """Record one approval; the request is approved once enough distinct approvers sign."""
        with self._lock:
            request = self._get(request_id)
            self._require_pending(request, "approve")

            if request.requested_by == approved_by:
                raise SelfApprovalError(
                    f'Cannot self-approve: requester "{approved_by}" cannot approve own request',
                    request_id,
                )
            if any(a["approvedBy"] == approved_by for a in request.approvals):
                raise DuplicateApprovalError(
                    f'User "{approved_by}" has already approved request {request_id}',
                    request_id,
                )

            now = self._clock()
            request.approvals.append({
                "approvedBy": approved_by,
                "comment": comment,
                "timestamp": now.isoformat(),
            })

            granted = len(request.approvals) >= request.required_approvers
            if granted:
                request.status = ApprovalStatus.APPROVED
                request.resolved_at = now
            snapshot = copy.deepcopy(request)

        progress = f"{len(snapshot.approvals)}/{snapshot.required_approvers} approvals"
        if granted:
            logger.info(f"Approval granted: {request_id} ({progress})")
            record_approval_decision(ApprovalStatus.APPROVED.value)
        else:
            logger.info(f"Approval recorded: {request_id} ({progress})")
        self._audit(AuditEventType.APPROVAL_APPROVED, approved_by, snapshot, "approve",
                    extra={"comment": comment})
        return snapshot

    def reject(self, request_id: str, rejected_by: str, reason: Optional[str] = None) -> ApprovalRequest:
        """Reject a pending request. Any single rejection is final."""
        with self._lock:
            request = self._get(request_id)
            self._require_pending(request, "reject")

            now = self._clock()
            request.rejections.append({
                "rejectedBy": rejected_by,
                "reason": reason,
                "timestamp": now.isoformat(),
            })
            request.status = ApprovalStatus.REJECTED
            request.resolved_at = now
            snapshot = copy.deepcopy(request)

        logger.info(f"Approval rejected: {request_id} by {rejected_by}", extra_fields={"reason": reason})
        record_approval_decision(ApprovalStatus.REJECTED.value)
        self._audit(AuditEventType.APPROVAL_REJECTED, rejected_by, snapshot, "reject",
                    outcome=AuditOutcome.DENIED, extra={"reason": reason})
        return snapshot

    def cancel(self, request_id: str, cancelled_by: str) -> ApprovalRequest:
        """Withdraw a pending request. Only the requester may cancel."""
        with self._lock:
            request = self._get(request_id)
            self._require_pending(request, "cancel")

            if request.requested_by != cancelled_by:
                raise InvalidTransitionError(
                    f'Only the requester can cancel: expected "{request.requested_by}" got "{cancelled_by}"',
                    request_id,
                )

            request.status = ApprovalStatus.CANCELLED
            request.resolved_at = self._clock()
            snapshot = copy.deepcopy(request)

        logger.info(f"Approval cancelled: {request_id} by {cancelled_by}")
        record_approval_decision(ApprovalStatus.CANCELLED.value)
        self._audit(AuditEventType.APPROVAL_CANCELLED, cancelled_by, snapshot, "cancel")
        return snapshot

    def get_request(self, request_id: str) -> ApprovalRequest:
        """Full copy of a request (expiry applied)."""
        with self._lock:
            request = self._get(request_id)
            self._expire_if_due(request, self._clock())
            return copy.deepcopy(request)

    def check_approval_status(self, request_id: str) -> Dict[str, Any]:
        """Compact status summary (expiry applied)."""
        request = self.get_request(request_id)
        return {
            "requestId": request.request_id,
            "operation": request.operation,
            "tier": request.tier,
            "status": request.status.value,
            "requestedBy": request.requested_by,
            "approvalsReceived": len(request.approvals),
            "approvalsRequired": request.required_approvers,
            "createdAt": _iso(request.created_at),
            "expiresAt": _iso(request.expires_at),
            "resolvedAt": _iso(request.resolved_at),
        }

    def list_pending_approvals(
        self,
        operation: Optional[str] = None,
        requested_by: Optional[str] = None,
        tier: Optional[int] = None,
    ) -> List[ApprovalRequest]:
        """Pending requests matching the filters; due requests are expired first."""
        now = self._clock()
        pending = []
        with self._lock:
            for request in self._requests.values():
                self._expire_if_due(request, now)
                if not request.is_pending:
                    continue
                if operation and request.operation != operation:
                    continue
                if requested_by and request.requested_by != requested_by:
                    continue
                if tier and request.tier != tier:
                    continue
                pending.append(copy.deepcopy(request))
        return pending

    def list_all_requests(self, status: Optional[str] = None, limit: int = 100) -> List[ApprovalRequest]:
        with self._lock:
            results = [
                r for r in self._requests.values()
                if not status or r.status.value == ApprovalStatus(status).value
            ]
            return [copy.deepcopy(r) for r in results[:limit]]

    def clear(self) -> None:
        with self._lock:
            self._requests.clear()
