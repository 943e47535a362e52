"""Core data models shared across the toolkit."""

from core.models.refs import (
    DataReference,
    AuditEntry,
    AuditOutcome,
)

__all__ = [
    "DataReference",
    "AuditEntry",
    "AuditOutcome",
]
