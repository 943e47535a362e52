"""Core security - operation tiers, approvals and the operation gate."""

from core.security.tiers import (
    OPERATION_TIERS,
    SECURITY_TIERS,
    PermissionDecision,
    SecurityTier,
    TierManager,
    UserContext,
)
from core.security.approval import (
    ApprovalError,
    ApprovalGate,
    ApprovalNotFoundError,
    ApprovalRequest,
    ApprovalStatus,
    DuplicateApprovalError,
    InvalidTransitionError,
    SelfApprovalError,
)
from core.security.gate import GateDecision, GateStatus, OperationGate

__all__ = [
    "OPERATION_TIERS",
    "SECURITY_TIERS",
    "PermissionDecision",
    "SecurityTier",
    "TierManager",
    "UserContext",
    "ApprovalError",
    "ApprovalGate",
    "ApprovalNotFoundError",
    "ApprovalRequest",
    "ApprovalStatus",
    "DuplicateApprovalError",
    "InvalidTransitionError",
    "SelfApprovalError",
    "GateDecision",
    "GateStatus",
    "OperationGate",
]
