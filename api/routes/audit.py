"""Audit trail endpoints."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from api.state import get_state


router = APIRouter()


@router.get("")
async def query_audit(
    event: Optional[str] = Query(None, description="Event type, e.g. approval.approved"),
    actor: Optional[str] = Query(None),
    resource: Optional[str] = Query(None, description="Operation or object id"),
    outcome: Optional[str] = Query(None, description="success, failure, error or denied"),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> Dict[str, Any]:
    """Query the audit trail, oldest entries first."""
    result = get_state().audit_logger.query(
        event=event, actor=actor, resource=resource, outcome=outcome,
        since=since, until=until, limit=limit, offset=offset,
    )
    return {
        "total": result["total"],
        "limit": limit,
        "offset": offset,
        "entries": [e.model_dump(mode="json") for e in result["entries"]],
    }


@router.get("/stats")
async def audit_stats() -> Dict[str, Any]:
    return get_state().audit_logger.get_stats()
