"""Process intelligence endpoints.

Lists the built-in reference processes and runs the full analysis over an
event log posted as flat records or in its serialized form.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from api.routes.security import UserModel
from api.state import get_state
from core.audit.events import AuditEventType
from core.observability.logging import get_logger
from process_mining.engine import ProcessIntelligenceReport
from process_mining.event_log import EventLog


logger = get_logger(__name__)

router = APIRouter()

ANALYZE_OPERATION = "process_mining.analyze"


class ProcessInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    activities: int
    edges: int
    sla_targets: int = Field(..., alias="slaTargets")


class AnalyzeRequest(BaseModel):
    """Analysis request. Exactly one of ``records`` or ``log`` is required."""
    model_config = ConfigDict(populate_by_name=True)

    process_id: Optional[str] = Field(None, alias="processId", description="Built-in process, e.g. O2C")
    records: Optional[List[Dict[str, Any]]] = Field(
        None, description="Flat event rows: caseId, activity, timestamp, resource, ...")
    log: Optional[Dict[str, Any]] = Field(None, description="Serialized event log {name, traces}")
    reference_model: Optional[Dict[str, Any]] = Field(None, alias="referenceModel")
    sla_targets: Optional[Dict[str, Any]] = Field(None, alias="slaTargets")
    sod_rules: Optional[List[Dict[str, Any]]] = Field(None, alias="sodRules")
    skip: List[str] = Field(default_factory=list, description="Phase names to leave out")
    persist: bool = Field(default=False, description="Store the report under the artifacts directory")
    user: UserModel = Field(
        default_factory=lambda: UserModel(user_id="anonymous"), description="Caller")


def _build_log(request: AnalyzeRequest) -> EventLog:
    if (request.records is None) == (request.log is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of 'records' or 'log'")
    if request.records is not None:
        return EventLog.from_records(request.records, name=request.process_id or "EventLog")
    return EventLog.from_dict(request.log)


@router.get("/processes", response_model=List[ProcessInfo], response_model_by_alias=True)
async def list_processes() -> List[ProcessInfo]:
    """Built-in reference processes."""
    return [ProcessInfo(**m) for m in get_state().engine.registry.list_models()]


@router.get("/processes/{process_id}/reference-model")
async def get_reference_model(process_id: str) -> Dict[str, Any]:
    registry = get_state().engine.registry
    if process_id not in registry:
        raise HTTPException(status_code=404, detail=f"Unknown process: {process_id}")
    return registry.get(process_id).to_dict()


@router.post("/analyze")
async def analyze(request: AnalyzeRequest) -> Dict[str, Any]:
    """Run the six-phase analysis and return the report.

    Input errors (bad records, unknown process, bad skip list) come back as
    400; phase failures, including an unreadable reference model, are
    reported inside the report.
    """
    state = get_state()
    log = _build_log(request)
    user = request.user.to_context()

    def action(dry_run: bool) -> ProcessIntelligenceReport:
        return state.engine.analyze(
            log,
            process_id=request.process_id,
            reference_model=request.reference_model,
            sla_targets=request.sla_targets,
            sod_rules=request.sod_rules,
            skip=request.skip,
        )

    decision = state.operation_gate.execute(ANALYZE_OPERATION, user, action)
    if not decision.allowed:
        raise HTTPException(status_code=403, detail=decision.reason)

    report: ProcessIntelligenceReport = decision.result
    summary = report.get_summary()
    state.audit_logger.record(
        AuditEventType.ANALYSIS_COMPLETED,
        actor=user.user_id,
        resource=request.process_id or "custom",
        action="analyze",
        metadata={"runId": report.run_id, "cases": summary["cases"],
                  "completedPhases": summary["completedPhases"], "errors": summary["errors"]},
    )

    body = report.to_dict()
    if request.persist:
        ref = state.artifacts.put_json(body, f"reports/{report.run_id}.json")
        logger.info(f"Report stored: {ref.storage_uri}", extra_fields={"run_id": report.run_id})
        body["artifact"] = ref.model_dump(mode="json")
    return body
