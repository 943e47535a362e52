"""
Security Tier, Approval and Audit Tests

Validates the governance layer:
1. Operations are classified into four tiers; unknown ones are tier 4
2. Permission checks compare clearance and production roles
3. Approval requests enforce self-approval, duplicate and expiry rules
4. The operation gate audits denials, executions and failures
5. Audit entries persist to JSON lines and can be queried
"""

from datetime import datetime, timedelta, timezone

import pytest


T0 = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TestTierClassification:
    """Test operation -> tier mapping."""

    def test_catalogue_tiers(self):
        from core.security.tiers import TierManager
        tiers = TierManager()
        assert tiers.get_tier("process_mining.analyze") == 1
        assert tiers.get_tier("migration.load_sandbox") == 2
        assert tiers.get_tier("migration.load_staging") == 3
        assert tiers.get_tier("migration.load_production") == 4

    def test_unknown_operation_is_production(self):
        from core.security.tiers import TierManager
        tiers = TierManager()
        assert tiers.get_tier("migration.teleport") == 4
        assert tiers.get_tier("") == 4
        assert tiers.requires_approval("migration.teleport")
        assert tiers.get_required_approvers("migration.teleport") == 2

    def test_classify(self):
        from core.security.tiers import TierManager
        assert TierManager().classify("migration.load_staging") == {
            "operation": "migration.load_staging",
            "tier": 3,
            "label": "Staging",
            "description": "Pre-production validation and staging loads",
            "requiresApproval": True,
            "requiredApprovers": 1,
        }

    def test_list_operations_by_tier(self):
        from core.security.tiers import TierManager
        grouped = TierManager().list_operations_by_tier()
        assert set(grouped) == {1, 2, 3, 4}
        assert "migration.go_live" in grouped[4]
        assert "extraction.run" in grouped[1]

    def test_custom_catalogue(self):
        from core.security.tiers import TierManager
        tiers = TierManager(default_tier=3, operation_tiers={"report.build": 1})
        assert tiers.get_tier("report.build") == 1
        assert tiers.get_tier("migration.load_sandbox") == 3


class TestPermissions:
    """Test permission decisions."""

    def test_clearance_too_low(self):
        from core.security.tiers import TierManager, UserContext
        decision = TierManager().check_permission("migration.load_staging", UserContext("dev", max_tier=2))
        assert not decision.allowed
        assert decision.tier == 3
        assert "authorized up to tier 2" in decision.reason

    def test_within_clearance(self):
        from core.security.tiers import TierManager, UserContext
        decision = TierManager().check_permission("migration.transform", UserContext("dev", max_tier=2))
        assert decision.allowed
        assert decision.to_dict()["tierLabel"] == "Development"

    def test_production_requires_role(self):
        from core.security.tiers import TierManager, UserContext
        tiers = TierManager()
        assert not tiers.check_permission("migration.go_live", UserContext("ops", max_tier=4)).allowed
        assert not tiers.check_permission("migration.go_live", UserContext("ops", 4, ["viewer"])).allowed
        assert tiers.check_permission("migration.go_live", UserContext("ops", 4, ["production"])).allowed
        assert tiers.check_permission("migration.go_live", UserContext("root", 4, ["admin"])).allowed

    def test_default_user_is_read_only(self):
        from core.security.tiers import TierManager, UserContext
        user = UserContext("guest")
        tiers = TierManager()
        assert tiers.check_permission("process_mining.analyze", user).allowed
        assert not tiers.check_permission("migration.transform", user).allowed


class TestApprovalGate:
    """Test the approval request lifecycle."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def approvals(self, clock):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        from core.security.approval import ApprovalGate
        return ApprovalGate(audit_logger=AuditLogger([InMemoryAuditBackend()]), clock=clock)

    def test_self_approval_rejected_then_reject(self, approvals):
        from core.security.approval import ApprovalStatus, SelfApprovalError
        request = approvals.request_approval("migration.load_staging", "u1")
        assert request.status == ApprovalStatus.PENDING
        assert request.tier == 3
        assert request.required_approvers == 1

        with pytest.raises(SelfApprovalError, match="self-approve"):
            approvals.approve(request.request_id, "u1")

        rejected = approvals.reject(request.request_id, "u2", reason="Not in freeze window")
        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.rejections[0]["rejectedBy"] == "u2"
        assert rejected.approvals == []

    def test_production_needs_two_distinct_approvers(self, approvals):
        from core.security.approval import ApprovalStatus, DuplicateApprovalError
        request = approvals.request_approval("migration.load_production", "u1")
        assert request.required_approvers == 2

        first = approvals.approve(request.request_id, "u2")
        assert first.status == ApprovalStatus.PENDING
        with pytest.raises(DuplicateApprovalError):
            approvals.approve(request.request_id, "u2")

        second = approvals.approve(request.request_id, "u3", comment="Cutover signed off")
        assert second.status == ApprovalStatus.APPROVED
        assert [a["approvedBy"] for a in second.approvals] == ["u2", "u3"]
        assert second.resolved_at == T0

    def test_terminal_requests_are_final(self, approvals):
        from core.security.approval import InvalidTransitionError
        request = approvals.request_approval("migration.load_staging", "u1")
        approvals.approve(request.request_id, "u2")

        with pytest.raises(InvalidTransitionError, match="approved"):
            approvals.reject(request.request_id, "u3")
        with pytest.raises(InvalidTransitionError):
            approvals.cancel(request.request_id, "u1")

    def test_expiry(self, approvals, clock):
        from core.security.approval import ApprovalStatus, InvalidTransitionError
        request = approvals.request_approval("migration.load_staging", "u1")
        assert request.expires_at == T0 + timedelta(hours=24)

        clock.advance(hours=24)
        assert approvals.get_request(request.request_id).status == ApprovalStatus.PENDING

        clock.advance(seconds=1)
        with pytest.raises(InvalidTransitionError, match="expired"):
            approvals.approve(request.request_id, "u2")
        assert approvals.check_approval_status(request.request_id)["status"] == "expired"
        expired = approvals.audit_logger.query(event="approval.expired")
        assert expired["total"] == 1
        assert expired["entries"][0].actor == "system"

    def test_cancel_only_by_requester(self, approvals):
        from core.security.approval import ApprovalStatus, InvalidTransitionError
        request = approvals.request_approval("migration.cutover_rehearsal", "u1")
        with pytest.raises(InvalidTransitionError, match="Only the requester"):
            approvals.cancel(request.request_id, "u2")
        assert approvals.cancel(request.request_id, "u1").status == ApprovalStatus.CANCELLED

    def test_low_tiers_auto_approved(self, approvals):
        from core.security.approval import ApprovalStatus
        request = approvals.request_approval("migration.transform", "u1")
        assert request.status == ApprovalStatus.APPROVED
        assert request.request_id is None
        assert request.to_dict()["autoApproved"] is True
        assert approvals.list_all_requests() == []

    def test_unknown_request(self, approvals):
        from core.security.approval import ApprovalNotFoundError
        with pytest.raises(ApprovalNotFoundError):
            approvals.approve("apr-missing", "u2")
        with pytest.raises(ApprovalNotFoundError):
            approvals.get_request("apr-missing")

    def test_list_pending_filters(self, approvals, clock):
        staging = approvals.request_approval("migration.load_staging", "u1")
        approvals.request_approval("migration.go_live", "u2")
        done = approvals.request_approval("transport.release", "u1")
        approvals.approve(done.request_id, "u3")

        assert len(approvals.list_pending_approvals()) == 2
        assert [r.request_id for r in approvals.list_pending_approvals(requested_by="u1")] == [staging.request_id]
        assert [r.operation for r in approvals.list_pending_approvals(tier=4)] == ["migration.go_live"]
        assert len(approvals.list_all_requests(status="approved")) == 1

        clock.advance(days=2)
        assert approvals.list_pending_approvals() == []
        assert len(approvals.list_all_requests(status="expired")) == 2

    def test_returned_requests_are_copies(self, approvals):
        request = approvals.request_approval("migration.load_staging", "u1", details={"objects": ["GL"]})
        request.details["objects"].append("BP")
        assert approvals.get_request(request.request_id).details == {"objects": ["GL"]}

    def test_every_transition_audited(self, approvals):
        request = approvals.request_approval("migration.load_production", "u1")
        approvals.approve(request.request_id, "u2")
        approvals.reject(request.request_id, "u3", reason="Data not reconciled")

        events = [e.event for e in approvals.audit_logger.query()["entries"]]
        assert events == ["approval.requested", "approval.approved", "approval.rejected"]
        rejected = approvals.audit_logger.query(event="approval.rejected")["entries"][0]
        assert rejected.outcome.value == "denied"
        assert rejected.metadata["reason"] == "Data not reconciled"


class TestOperationGate:
    """Test execution through the operation gate."""

    @pytest.fixture
    def gate(self):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        from core.security.approval import ApprovalGate
        from core.security.gate import OperationGate
        from core.security.tiers import TierManager
        tiers = TierManager()
        audit = AuditLogger([InMemoryAuditBackend()])
        return OperationGate(tiers, ApprovalGate(tiers, audit_logger=audit), audit)

    def test_denied_never_calls_action(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        calls = []
        decision = gate.execute("migration.load_staging", UserContext("dev", max_tier=2), calls.append)

        assert decision.status == GateStatus.DENIED
        assert not decision.allowed
        assert calls == []
        denied = gate.audit_logger.query(event="security.permission_denied")["entries"]
        assert denied[0].outcome.value == "denied"

    def test_tier_one_runs_without_audit(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        decision = gate.execute("process_mining.analyze", UserContext("analyst"), lambda dry_run: {"ok": True})

        assert decision.status == GateStatus.EXECUTED
        assert decision.result == {"ok": True}
        assert gate.audit_logger.query()["total"] == 0

    def test_approval_for_other_operation_denied(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        request = gate.approval_gate.request_approval("transport.release", "u1")
        gate.approval_gate.approve(request.request_id, "u2")

        decision = gate.execute("migration.load_staging", UserContext("u1", max_tier=3), lambda d: None,
                                approval_id=request.request_id)
        assert decision.status == GateStatus.DENIED
        assert "transport.release" in decision.reason

    def test_pending_approval_not_enough(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        request = gate.approval_gate.request_approval("migration.load_staging", "u1")
        decision = gate.execute("migration.load_staging", UserContext("u1", max_tier=3), lambda d: None,
                                approval_id=request.request_id)
        assert decision.status == GateStatus.APPROVAL_REQUIRED
        assert decision.reason.endswith("is pending")

    def test_unknown_approval_id(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        decision = gate.execute("migration.load_staging", UserContext("u1", max_tier=3), lambda d: None,
                                approval_id="apr-nope")
        assert decision.status == GateStatus.APPROVAL_REQUIRED
        assert decision.approval_id == "apr-nope"

    def test_dry_run_skips_approval_but_not_permission(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        seen = []
        decision = gate.execute("migration.load_staging", UserContext("u1", max_tier=3),
                                lambda dry_run: seen.append(dry_run), dry_run=True)
        assert decision.status == GateStatus.DRY_RUN
        assert seen == [True]
        executed = gate.audit_logger.query(event="operation.execute")["entries"]
        assert executed[0].metadata["details"] == {"dryRun": True}

        low = gate.execute("migration.load_staging", UserContext("dev", max_tier=2), seen.append, dry_run=True)
        assert low.status == GateStatus.DENIED

    def test_action_errors_audited_and_raised(self, gate):
        from core.security.tiers import UserContext

        def explode(dry_run):
            raise RuntimeError("target system unreachable")

        with pytest.raises(RuntimeError, match="unreachable"):
            gate.execute("migration.load_sandbox", UserContext("dev", max_tier=2), explode)

        failed = gate.audit_logger.query(event="operation.failed")["entries"]
        assert failed[0].outcome.value == "error"
        assert failed[0].metadata["error"] == "RuntimeError: target system unreachable"

    def test_outcome_mapping(self, gate):
        from core.models.refs import AuditOutcome
        from core.security.tiers import UserContext
        gate.execute("migration.validate", UserContext("dev", max_tier=2), lambda d: "invalid",
                     outcome_of=lambda result: AuditOutcome.FAILURE)
        assert gate.audit_logger.query(outcome="failure")["total"] == 1


class TestAuditLogger:
    """Test audit persistence and queries."""

    def test_json_lines_round_trip(self, tmp_path):
        from core.audit.events import AuditEventType, AuditLogger, JSONLinesAuditBackend
        path = tmp_path / "audit" / "audit.jsonl"
        audit = AuditLogger([JSONLinesAuditBackend(path)])
        audit.record(AuditEventType.MIGRATION_STARTED, actor="u1", resource="GL_BALANCE",
                     metadata={"dryRun": False})
        audit.record(AuditEventType.MIGRATION_COMPLETED, actor="u1", resource="GL_BALANCE")

        assert len(path.read_text(encoding="utf-8").splitlines()) == 2
        reopened = AuditLogger([JSONLinesAuditBackend(path)])
        entries = reopened.query(resource="GL_BALANCE")["entries"]
        assert [e.event for e in entries] == ["migration.start", "migration.complete"]
        assert entries[0].metadata == {"dryRun": False}
        assert entries[0].timestamp.tzinfo is not None

    def test_entries_are_frozen(self):
        from pydantic import ValidationError
        from core.audit.events import AuditLogger
        entry = AuditLogger().record("config.change", actor="admin")
        with pytest.raises(ValidationError):
            entry.actor = "someone-else"

    def test_tier_one_operations_not_audited(self):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        audit = AuditLogger([InMemoryAuditBackend()])
        assert audit.log_operation("system.info", 1, "u1") is None
        entry = audit.log_operation("migration.transform", 2, "u1", tier_label="Development")
        assert entry.event == "operation.execute"
        assert entry.metadata["tierLabel"] == "Development"

    def test_query_paging_and_time_window(self):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        audit = AuditLogger([InMemoryAuditBackend()])
        for i in range(5):
            audit.record("config.change", actor=f"u{i}")

        page = audit.query(limit=2, offset=1)
        assert page["total"] == 5
        assert [e.actor for e in page["entries"]] == ["u1", "u2"]
        assert audit.query(since=datetime.now(timezone.utc) + timedelta(minutes=1))["total"] == 0
        assert audit.query(until=datetime.now(timezone.utc) + timedelta(minutes=1))["total"] == 5

    def test_stats(self):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        audit = AuditLogger([InMemoryAuditBackend()])
        audit.record("approval.requested", actor="u1")
        audit.record("approval.approved", actor="u2")
        audit.record("approval.rejected", actor="u2", outcome="denied")

        stats = audit.get_stats()
        assert stats["totalEntries"] == 3
        assert stats["byActor"] == {"u1": 1, "u2": 2}
        assert stats["byOutcome"] == {"success": 2, "denied": 1}
        assert AuditLogger().get_stats()["totalEntries"] == 0

    def test_failing_backend_does_not_block_others(self, tmp_path):
        from core.audit.events import AuditBackend, AuditLogger, InMemoryAuditBackend

        class BrokenBackend(AuditBackend):
            def log(self, entry):
                raise OSError("disk full")

            def entries(self):
                return []

        memory = InMemoryAuditBackend()
        audit = AuditLogger([BrokenBackend(), memory])
        audit.record("config.change")
        assert len(memory.entries()) == 1

    def test_in_memory_bounded(self):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        backend = InMemoryAuditBackend(max_entries=3)
        audit = AuditLogger([backend])
        for i in range(5):
            audit.record("config.change", actor=f"u{i}")
        assert [e.actor for e in backend.entries()] == ["u2", "u3", "u4"]
