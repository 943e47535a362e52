"""Audit event logging and persistence.

Provides an append-only audit trail for gated operations, approval
decisions and migration runs. Supports multiple persistence backends.
"""

import json
import os
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Union

from core.models.refs import AuditEntry, AuditOutcome
from core.observability.logging import get_logger


logger = get_logger(__name__)

# Operations at or above this tier are written to the audit trail.
AUDITED_MIN_TIER = 2


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Operation execution
    OPERATION_EXECUTE = "operation.execute"
    OPERATION_FAILED = "operation.failed"

    # Security
    PERMISSION_DENIED = "security.permission_denied"

    # Approval lifecycle
    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_APPROVED = "approval.approved"
    APPROVAL_REJECTED = "approval.rejected"
    APPROVAL_CANCELLED = "approval.cancelled"
    APPROVAL_EXPIRED = "approval.expired"

    # Migration lifecycle
    MIGRATION_STARTED = "migration.start"
    MIGRATION_COMPLETED = "migration.complete"
    MIGRATION_FAILED = "migration.fail"

    # Analytics
    ANALYSIS_COMPLETED = "analysis.completed"

    # System events
    CONFIGURATION_CHANGED = "config.change"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_audit_entry(
    event: Union[AuditEventType, str],
    actor: str = "system",
    resource: Optional[str] = None,
    action: Optional[str] = None,
    outcome: Union[AuditOutcome, str] = AuditOutcome.SUCCESS,
    metadata: Optional[Dict[str, Any]] = None,
    ip: Optional[str] = None,
) -> AuditEntry:
    """Create a new audit entry with auto-generated ID and timestamp.

    Args:
        event: Event kind
        actor: Who/what performed the action
        resource: Operation or object acted upon
        action: Action verb (execute, approve, reject, ...)
        outcome: Result of the action
        metadata: Additional structured details
        ip: Client address, when known

    Returns:
        Frozen AuditEntry ready for logging
    """
    return AuditEntry(
        id=f"aud-{uuid.uuid4()}",
        timestamp=_utcnow(),
        event=event.value if isinstance(event, AuditEventType) else event,
        actor=actor,
        ip=ip,
        resource=resource,
        action=action,
        outcome=AuditOutcome(outcome),
        metadata=dict(metadata or {}),
    )


def _filter_entries(
    entries: Iterable[AuditEntry],
    event: Optional[str] = None,
    actor: Optional[str] = None,
    resource: Optional[str] = None,
    outcome: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[AuditEntry]:
    if isinstance(event, AuditEventType):
        event = event.value
    if isinstance(outcome, AuditOutcome):
        outcome = outcome.value
    since = _as_utc(since) if since else None
    until = _as_utc(until) if until else None

    results = []
    for entry in entries:
        if event and entry.event != event:
            continue
        if actor and entry.actor != actor:
            continue
        if resource and entry.resource != resource:
            continue
        if outcome and entry.outcome.value != outcome:
            continue
        if since and _as_utc(entry.timestamp) < since:
            continue
        if until and _as_utc(entry.timestamp) > until:
            continue
        results.append(entry)
    return results


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, entry: AuditEntry) -> None:
        """Persist an audit entry."""
        pass

    @abstractmethod
    def entries(self) -> List[AuditEntry]:
        """Return all stored entries, oldest first."""
        pass

    def query(self, **filters) -> List[AuditEntry]:
        """Return entries matching the filters, oldest first."""
        return _filter_entries(self.entries(), **filters)


class JSONLinesAuditBackend(AuditBackend):
    """Audit backend that appends entries to a JSON-lines file.

    Each write is flushed and fsynced before the lock is released, so
    concurrent writers in one process never interleave lines.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def log(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), default=str)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

    def entries(self) -> List[AuditEntry]:
        if not self.path.exists():
            return []
        results = []
        with self._lock:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        results.append(AuditEntry.model_validate(json.loads(line)))
        return results


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend keeping the most recent ``max_entries``."""

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._entries: List[AuditEntry] = []
        self._lock = Lock()

    def log(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.max_entries:
                self._entries = self._entries[-self.max_entries:]

    def entries(self) -> List[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        """Clear all entries (for testing)."""
        with self._lock:
            self._entries.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONLinesAuditBackend(Path("./audit/audit.jsonl")))

        audit.record(
            AuditEventType.APPROVAL_APPROVED,
            actor="u2",
            resource="migration.load_production",
            action="approve",
        )
    """

    def __init__(self, backends: Optional[List[AuditBackend]] = None):
        self._backends: List[AuditBackend] = list(backends or [])

    @property
    def backends(self) -> List[AuditBackend]:
        return list(self._backends)

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, entry: AuditEntry) -> None:
        """Write an entry to all backends."""
        for backend in self._backends:
            try:
                backend.log(entry)
            except (OSError, ValueError) as e:
                # A failing backend must not block the others
                logger.error(
                    f"Audit logging failed for backend {type(backend).__name__}: {e}",
                    extra_fields={"audit_id": entry.id, "event": entry.event},
                )

    def record(
        self,
        event: Union[AuditEventType, str],
        actor: str = "system",
        resource: Optional[str] = None,
        action: Optional[str] = None,
        outcome: Union[AuditOutcome, str] = AuditOutcome.SUCCESS,
        metadata: Optional[Dict[str, Any]] = None,
        ip: Optional[str] = None,
    ) -> AuditEntry:
        """Create an entry, write it to all backends and return it."""
        entry = create_audit_entry(event, actor, resource, action, outcome, metadata, ip)
        self.log(entry)
        return entry

    def log_operation(
        self,
        operation: str,
        tier: int,
        actor: str,
        outcome: Union[AuditOutcome, str] = AuditOutcome.SUCCESS,
        tier_label: Optional[str] = None,
        duration_ms: Optional[float] = None,
        approval_id: Optional[str] = None,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        """Record the execution of a classified operation.

        Only tier 2 and above are audited; tier-1 reads return None.
        """
        if tier < AUDITED_MIN_TIER:
            return None

        outcome = AuditOutcome(outcome)
        metadata: Dict[str, Any] = {
            "tier": tier,
            "tierLabel": tier_label,
            "durationMs": duration_ms,
            "approvalId": approval_id,
        }
        if error:
            metadata["error"] = error
        if details:
            metadata["details"] = details

        event = (
            AuditEventType.OPERATION_EXECUTE
            if outcome == AuditOutcome.SUCCESS
            else AuditEventType.OPERATION_FAILED
        )
        return self.record(event, actor=actor, resource=operation, action="execute",
                           outcome=outcome, metadata=metadata)

    def query(
        self,
        event: Optional[str] = None,
        actor: Optional[str] = None,
        resource: Optional[str] = None,
        outcome: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Query entries from the first backend.

        Returns:
            {"total": matching count, "entries": page of entries oldest first}
        """
        if not self._backends:
            return {"total": 0, "entries": []}
        results = self._backends[0].query(
            event=event, actor=actor, resource=resource, outcome=outcome,
            since=since, until=until,
        )
        return {"total": len(results), "entries": results[offset:offset + limit]}

    def get_stats(self) -> Dict[str, Any]:
        """Summarize the first backend's entries."""
        entries = self._backends[0].entries() if self._backends else []
        return {
            "totalEntries": len(entries),
            "byEvent": dict(Counter(e.event for e in entries)),
            "byOutcome": dict(Counter(e.outcome.value for e in entries)),
            "byActor": dict(Counter(e.actor for e in entries)),
            "oldestEntry": entries[0].timestamp.isoformat() if entries else None,
            "newestEntry": entries[-1].timestamp.isoformat() if entries else None,
        }
