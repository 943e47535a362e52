"""Migration object endpoints.

Runs go through the operation gate: staging loads need an approved
request, production loads additionally need an admin/production role.
Dry runs are permission-checked but skip the approval requirement.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from api.routes.security import UserModel
from api.state import get_state
from core.security.gate import GateStatus


router = APIRouter()

RUN_OPERATIONS = ("migration.load_sandbox", "migration.load_staging", "migration.load_production")


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: UserModel
    operation: str = Field(default="migration.load_staging", description="Gated operation for this load")
    approval_id: Optional[str] = Field(None, alias="approvalId")
    dry_run: bool = Field(default=False, alias="dryRun")
    include_records: bool = Field(default=False, alias="includeRecords")


@router.get("/objects")
async def list_objects() -> List[Dict[str, Any]]:
    return [obj.to_dict() for obj in get_state().migration_objects.values()]


@router.get("/objects/{object_id}")
async def get_object(object_id: str) -> Dict[str, Any]:
    obj = get_state().migration_objects.get(object_id)
    if obj is None:
        raise HTTPException(status_code=404, detail=f"Migration object not found: {object_id}")
    result = obj.to_dict()
    result["fieldMappings"] = [m.to_dict() for m in obj.get_field_mappings()]
    return result


@router.post("/objects/{object_id}/run")
async def run_object(object_id: str, request: RunRequest) -> Dict[str, Any]:
    """Run one migration object through the gate.

    Denials come back as 403 with the gate decision; runs that fail
    validation or I/O return 200 with the status in the result.
    """
    state = get_state()
    obj = state.migration_objects.get(object_id)
    if obj is None:
        raise HTTPException(status_code=404, detail=f"Migration object not found: {object_id}")
    if request.operation not in RUN_OPERATIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Operation must be one of: {', '.join(RUN_OPERATIONS)}",
        )

    decision = obj.run_with_gate(
        state.operation_gate,
        request.user.to_context(),
        operation=request.operation,
        approval_id=request.approval_id,
        dry_run=request.dry_run,
    )
    if decision.status in (GateStatus.DENIED, GateStatus.APPROVAL_REQUIRED):
        raise HTTPException(status_code=403, detail=decision.to_dict())

    body = decision.to_dict()
    if request.include_records:
        body["result"] = decision.result.to_dict(include_records=True)
    return body
