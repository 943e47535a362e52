"""Data reference and audit models for artifact storage and tracking."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class DataReference(BaseModel):
    """Reference to a stored artifact with metadata for retrieval and verification.

    Attributes:
        storage_uri: Absolute file path to the artifact
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type (e.g., "application/json")
        size_bytes: Size of the artifact in bytes
        stored_at: Timestamp when the artifact was stored
    """
    storage_uri: str = Field(..., description="Absolute file path to the artifact")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/json", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.utcnow, description="Storage timestamp")


# =============================================================================
# Audit Models
# =============================================================================

class AuditOutcome(str, Enum):
    """Outcome recorded on an audit entry."""
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    DENIED = "denied"


class AuditEntry(BaseModel):
    """An immutable audit log entry.

    Entries are frozen once created; the audit trail is append-only.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique entry identifier")
    timestamp: datetime = Field(..., description="When the entry was recorded (UTC)")
    event: str = Field(..., description="Event kind, e.g. operation.execute")
    actor: str = Field(default="system", description="Who/what performed the action")
    ip: Optional[str] = Field(None, description="Client address, when known")
    resource: Optional[str] = Field(None, description="Operation or object acted upon")
    action: Optional[str] = Field(None, description="Action verb, e.g. execute, approve")
    outcome: AuditOutcome = Field(default=AuditOutcome.SUCCESS, description="Result of the action")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional details")
