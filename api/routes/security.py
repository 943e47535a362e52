"""Security endpoints: operation tiers, permission checks and approvals."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field

from api.state import get_state
from core.security.tiers import UserContext


router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class UserModel(BaseModel):
    """Caller identity and clearance."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", description="Caller user id")
    max_tier: int = Field(default=1, ge=1, le=4, alias="maxTier", description="Highest tier the user may run")
    roles: List[str] = Field(default_factory=list, description="Roles, e.g. admin, production")

    def to_context(self) -> UserContext:
        return UserContext(user_id=self.user_id, max_tier=self.max_tier, roles=list(self.roles))


class PermissionCheckRequest(BaseModel):
    operation: str
    user: UserModel


class PermissionCheckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operation: str
    allowed: bool
    tier: int
    tier_label: str = Field(..., alias="tierLabel")
    reason: str


class ApprovalCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    operation: str
    requested_by: str = Field(..., alias="requestedBy")
    details: Dict[str, Any] = Field(default_factory=dict)


class ApproveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    approved_by: str = Field(..., alias="approvedBy")
    comment: Optional[str] = None


class RejectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rejected_by: str = Field(..., alias="rejectedBy")
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cancelled_by: str = Field(..., alias="cancelledBy")


# =============================================================================
# Tiers
# =============================================================================

@router.get("/security/tiers/{operation}")
async def get_operation_tier(operation: str) -> Dict[str, Any]:
    """Classify one operation (unknown operations are tier 4)."""
    return get_state().tier_manager.classify(operation)


@router.get("/security/tiers")
async def list_operation_tiers() -> Dict[str, List[str]]:
    grouped = get_state().tier_manager.list_operations_by_tier()
    return {str(tier): sorted(operations) for tier, operations in grouped.items()}


@router.post("/security/permissions/check", response_model=PermissionCheckResponse, response_model_by_alias=True)
async def check_permission(request: PermissionCheckRequest) -> PermissionCheckResponse:
    decision = get_state().tier_manager.check_permission(request.operation, request.user.to_context())
    return PermissionCheckResponse(
        operation=request.operation,
        allowed=decision.allowed,
        tier=decision.tier,
        tier_label=decision.tier_label,
        reason=decision.reason,
    )


# =============================================================================
# Approvals
# =============================================================================

@router.post("/approvals")
async def request_approval(request: ApprovalCreateRequest) -> Dict[str, Any]:
    """Open an approval request; operations below tier 3 come back auto-approved."""
    approval = get_state().approval_gate.request_approval(
        request.operation, request.requested_by, request.details)
    return approval.to_dict()


@router.get("/approvals/pending")
async def list_pending_approvals(
    operation: Optional[str] = Query(None, description="Filter by operation"),
    requested_by: Optional[str] = Query(None, alias="requestedBy", description="Filter by requester"),
    tier: Optional[int] = Query(None, ge=1, le=4, description="Filter by tier"),
) -> List[Dict[str, Any]]:
    pending = get_state().approval_gate.list_pending_approvals(
        operation=operation, requested_by=requested_by, tier=tier)
    return [r.to_dict() for r in pending]


@router.get("/approvals/{request_id}")
async def get_approval(request_id: str) -> Dict[str, Any]:
    return get_state().approval_gate.get_request(request_id).to_dict()


@router.get("/approvals/{request_id}/status")
async def get_approval_status(request_id: str) -> Dict[str, Any]:
    return get_state().approval_gate.check_approval_status(request_id)


@router.post("/approvals/{request_id}/approve")
async def approve(request_id: str, request: ApproveRequest) -> Dict[str, Any]:
    return get_state().approval_gate.approve(request_id, request.approved_by, request.comment).to_dict()


@router.post("/approvals/{request_id}/reject")
async def reject(request_id: str, request: RejectRequest) -> Dict[str, Any]:
    return get_state().approval_gate.reject(request_id, request.rejected_by, request.reason).to_dict()


@router.post("/approvals/{request_id}/cancel")
async def cancel(request_id: str, request: CancelRequest) -> Dict[str, Any]:
    return get_state().approval_gate.cancel(request_id, request.cancelled_by).to_dict()
