"""Core audit module - audit trail tracking and persistence."""

from core.audit.events import (
    AuditLogger,
    AuditBackend,
    AuditEventType,
    InMemoryAuditBackend,
    JSONLinesAuditBackend,
    create_audit_entry,
)

__all__ = [
    "AuditLogger",
    "AuditBackend",
    "AuditEventType",
    "InMemoryAuditBackend",
    "JSONLinesAuditBackend",
    "create_audit_entry",
]
