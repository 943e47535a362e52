"""
Migration Lifecycle Tests

Validates the ETLV pipeline for migration objects:
1. Field mapping converters and mapping kinds
2. Data quality checks and their severities
3. Extractors: modes, JSON payloads, registry, checkpoints
4. Built-in Business Partner and GL Balance runs end to end
5. Gated runs through tier checks and approvals
"""

import json

import pytest


def _gl_row(company="1000", account="100000", period="12", currency="usd"):
    return {
        "BUKRS": company,
        "HKONT": account,
        "GJAHR": "2024",
        "MONAT": period,
        "WAERS": currency,
        "DMBTR": "1250.50",
        "SHKZG": "S",
        "BUDAT": "20241231",
    }


class TestFieldMapping:
    """Test declarative field mappings."""

    def test_converters(self):
        from decimal import Decimal
        from core.mapping.engine import CONVERTERS
        assert CONVERTERS["padLeft10"]("123") == "0000000123"
        assert CONVERTERS["toDate"]("20241231") == "2024-12-31"
        assert CONVERTERS["toDate"]("") is None
        assert CONVERTERS["toDecimal"]("12.50") == Decimal("12.50")
        assert CONVERTERS["toDecimal"]("abc") == Decimal("0")
        assert CONVERTERS["toInteger"]("12abc") == 12
        assert CONVERTERS["boolYN"]("X") is True
        assert CONVERTERS["boolYN"]("") is False
        assert CONVERTERS["stripLeadingZeros"]("000") == "0"

    def test_load_mappings_from_json(self, tmp_path):
        from core.mapping.engine import FieldMappingEngine, MappingType
        path = tmp_path / "mappings.json"
        path.write_text(json.dumps({"mappings": [
            {"source": "KUNNR", "target": "Customer", "convert": "padLeft10"},
            {"target": "Country", "default": "US"},
        ]}), encoding="utf-8")

        engine = FieldMappingEngine.load_mappings_from_json(path, pass_through=True)
        assert [m.kind for m in engine.mappings] == [MappingType.CONVERT, MappingType.DEFAULT]
        assert engine.apply_record({"KUNNR": "7", "ORT01": "Berlin"}) == {
            "Customer": "0000000007", "Country": "US", "ORT01": "Berlin",
        }

    def test_mapping_kinds(self):
        from core.mapping.engine import FieldMappingEngine
        engine = FieldMappingEngine([
            {"source": "KUNNR", "target": "Customer", "convert": "padLeft10"},
            {"source": "KTOKD", "target": "Group", "valueMap": {"0001": "DOM"}, "default": "OTH"},
            {"sources": ["NAME1", "NAME2"], "target": "Name", "separator": " "},
            {"target": "Country", "default": "US"},
            {"source": "ORT01", "target": "City"},
        ])
        record = engine.apply_record({"KUNNR": "42", "KTOKD": "0002", "NAME1": "Acme", "NAME2": "Inc",
                                      "ORT01": "Chicago"})
        assert record == {
            "Customer": "0000000042",
            "Group": "OTH",
            "Name": "Acme Inc",
            "Country": "US",
            "City": "Chicago",
        }
        assert engine.get_summary()["processed"] == 1

    def test_pass_through(self):
        from core.mapping.engine import FieldMappingEngine
        engine = FieldMappingEngine([{"source": "A", "target": "X"}], pass_through=True)
        assert engine.apply_record({"A": 1, "B": 2}) == {"X": 1, "B": 2}

        engine.add_mapping({"target": "Y", "default": 0})
        assert engine.apply_record({"A": 1}) == {"X": 1, "Y": 0}

    def test_strict_mode_rejects_bad_definitions(self):
        from core.mapping.engine import FieldMappingEngine, MappingError
        with pytest.raises(MappingError):
            FieldMappingEngine([{"source": "A", "target": "X", "convert": "toKlingon"}], strict=True)

    def test_legacy_definitions(self):
        from core.mapping.engine import FieldMappingEngine
        mappings = FieldMappingEngine.from_legacy(["KUNNR -> Customer"])
        assert mappings[0].source == "KUNNR"
        assert mappings[0].target == "Customer"


class TestDataQuality:
    """Test quality checks and severities."""

    def test_required_is_error(self):
        from migration.data_quality import DataQualityChecker
        result = DataQualityChecker().check_required([{"a": 1}, {"a": ""}, {"a": None}], ["a"])
        assert result.severity == "error"
        assert [d["row"] for d in result.details] == [1, 2]

    def test_exact_duplicates(self):
        from migration.data_quality import DataQualityChecker
        result = DataQualityChecker().find_exact_duplicates([{"k": "1"}, {"k": "2"}, {"k": "1"}], ["k"])
        assert result.severity == "error"
        assert result.details == [{"row": 2, "duplicateOf": 0, "key": "1"}]

    def test_fuzzy_duplicates_are_warnings(self):
        from migration.data_quality import DataQualityChecker
        records = [{"name": "Acme Corporation"}, {"name": "Acme Corporatoin"}, {"name": "Acme Corporation"}]
        result = DataQualityChecker().find_fuzzy_duplicates(records, ["name"], threshold=0.85)
        assert result.severity == "warning"
        # identical strings are exact, not fuzzy, duplicates
        pairs = [(d["rowA"], d["rowB"]) for d in result.details]
        assert pairs == [(0, 1), (1, 2)]

    def test_fuzzy_duplicate_cap(self):
        from migration.data_quality import DataQualityChecker
        records = [{"name": "Acme Corporation"}, {"name": "Acme Corporatoin"}, {"name": "Acme Corporatiom"}]
        result = DataQualityChecker(fuzzy_cap=2).find_fuzzy_duplicates(records, ["name"])
        assert [(d["rowA"], d["rowB"]) for d in result.details] == [(0, 1)]

    def test_referential_integrity(self):
        from migration.data_quality import DataQualityChecker
        result = DataQualityChecker().check_referential_integrity(
            [{"cc": "1000"}, {"cc": "3000"}, {"cc": ""}], "cc", ["1000", "2000"])
        assert result.severity == "error"
        assert result.details == [{"row": 1, "field": "cc", "value": "3000"}]

    def test_format_and_range_are_warnings(self):
        from migration.data_quality import DataQualityChecker
        checker = DataQualityChecker()
        fmt = checker.check_format([{"acct": "0000100000"}, {"acct": "12"}], "acct", r"^\d{10}$")
        assert fmt.severity == "warning"
        assert fmt.count == 1

        rng = checker.check_range([{"p": 0}, {"p": "7"}, {"p": 17}, {"p": "n/a"}], "p", 1, 16)
        assert rng.severity == "warning"
        assert [d["reason"] for d in rng.details] == ["below min 1", "above max 16"]

    def test_report_status(self):
        from migration.data_quality import DataQualityChecker
        checker = DataQualityChecker()
        records = [{"id": "1", "cc": "1000"}, {"id": "2", "cc": "1000"}]

        assert checker.check(records, {"required": ["id"]}).status == "passed"
        assert checker.check(records, {"format": [{"field": "id", "pattern": "^X"}]}).status == "warnings"
        report = checker.check(records, {"referential": [{"field": "cc", "validSet": ["2000"]}]})
        assert report.status == "errors"
        assert report.to_dict()["errorCount"] == 1

    def test_checks_accept_camel_case(self):
        from migration.data_quality import QualityChecks
        checks = QualityChecks.model_validate({
            "exactDuplicate": {"keys": ["a"]},
            "fuzzyDuplicate": {"keys": ["b"], "threshold": 0.9},
        })
        assert checks.exact_duplicate.keys == ["a"]
        assert checks.fuzzy_duplicate.threshold == 0.9


class TestExtractors:
    """Test extraction modes, payload files and the registry."""

    def test_live_mode_not_implemented(self):
        from migration.extractors import ExtractorError, Mode, StaticExtractor
        extractor = StaticExtractor("X", "X", {"rows": [{"a": 1}]})
        assert extractor.extract(Mode.MOCK) == {"rows": [{"a": 1}]}
        with pytest.raises(ExtractorError) as exc_info:
            extractor.extract("live")
        assert exc_info.value.extractor_id == "X"

    def test_unknown_mode_rejected(self):
        from migration.extractors import StaticExtractor
        with pytest.raises(ValueError):
            StaticExtractor("X", "X", {}).extract("hybrid")

    def test_json_payload(self, tmp_path):
        from migration.extractors import JsonPayloadExtractor
        path = tmp_path / "gl.json"
        path.write_text(json.dumps({"balances": [_gl_row()]}), encoding="utf-8")
        result = JsonPayloadExtractor("FI_GL", "GL", path).extract()
        assert result["balances"][0]["BUKRS"] == "1000"

    def test_json_payload_errors(self, tmp_path):
        from migration.extractors import ExtractorError, JsonPayloadExtractor
        with pytest.raises(ExtractorError, match="Cannot read"):
            JsonPayloadExtractor("A", "A", tmp_path / "missing.json").extract()

        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        with pytest.raises(ExtractorError, match="Invalid JSON"):
            JsonPayloadExtractor("B", "B", broken).extract()

        wrong = tmp_path / "wrong.json"
        wrong.write_text(json.dumps({"rows": "nope"}), encoding="utf-8")
        with pytest.raises(ExtractorError, match="record lists"):
            JsonPayloadExtractor("C", "C", wrong).extract()

    def test_registry_replacement_reported(self):
        from migration.extractors import ExtractorRegistry, StaticExtractor
        registry = ExtractorRegistry()
        assert registry.register(StaticExtractor("A", "first", {})) is False
        assert registry.register(StaticExtractor("A", "second", {})) is True
        assert registry.get("A").name == "second"
        assert registry.replacements == ["A"]
        assert len(registry) == 1

    def test_registry_requires_id(self):
        from migration.extractors import ExtractorRegistry, StaticExtractor
        with pytest.raises(ValueError):
            ExtractorRegistry().register(StaticExtractor("", "nameless", {}))

    def test_default_extractors(self):
        from migration.extractors import ExtractorRegistry
        from migration.objects import register_default_extractors
        registry = register_default_extractors(ExtractorRegistry())
        assert registry.list_ids() == ["FI_TRANSACTIONS", "SD_CUSTOMERS"]
        tables = registry.get("SD_CUSTOMERS").to_dict()["expectedTables"]
        assert [t["table"] for t in tables] == ["KNA1", "LFA1"]
        assert [e["extractorId"] for e in registry.list_extractors()] == ["FI_TRANSACTIONS", "SD_CUSTOMERS"]


class TestCheckpoints:
    """Test resumable extraction."""

    def test_extraction_writes_checkpoints(self, tmp_path):
        from core.storage.checkpoints import CheckpointStore
        from migration.extractors import StaticExtractor
        store = CheckpointStore(tmp_path / "cp")
        StaticExtractor("SRC", "Source", {"rows": [{"a": 1}], "more": []}).extract(checkpoints=store)

        assert store.is_complete("SRC")
        assert store.list_keys("SRC") == ["_complete", "more", "rows"]
        assert store.load("SRC", "rows") == [{"a": 1}]
        assert store.get_completion("SRC")["resultKeys"] == ["rows", "more"]

    def test_resume_skips_source(self, tmp_path):
        from core.storage.checkpoints import CheckpointStore
        from migration.extractors import StaticExtractor

        class CountingExtractor(StaticExtractor):
            calls = 0

            def _extract_mock(self):
                CountingExtractor.calls += 1
                return super()._extract_mock()

        store = CheckpointStore(tmp_path / "cp")
        extractor = CountingExtractor("SRC", "Source", {"rows": [{"a": 1}, {"a": 2}]})
        first = extractor.extract(checkpoints=store)
        resumed = extractor.extract(checkpoints=store, resume=True)

        assert resumed == first
        assert CountingExtractor.calls == 1

    def test_clear(self, tmp_path):
        from core.storage.checkpoints import CheckpointStore
        store = CheckpointStore(tmp_path / "cp")
        store.save("SRC", "rows", [1, 2])
        store.mark_complete("SRC", ["rows"])
        assert store.clear("SRC") == 2
        assert not store.is_complete("SRC")
        assert store.clear("NONE") == 0

    def test_invalid_names_rejected(self, tmp_path):
        from core.storage.checkpoints import CheckpointStore
        store = CheckpointStore(tmp_path / "cp")
        with pytest.raises(ValueError):
            store.save("../escape", "rows", [])
        with pytest.raises(ValueError):
            store.load("SRC", "a/b")


class TestMockLoader:
    """Test the simulated target."""

    def test_error_count_truncates(self):
        from migration.lifecycle import MockLoader
        result = MockLoader(error_rate=0.02).load("OBJ", [{"i": i} for i in range(79)])
        assert result["errorCount"] == 1
        assert result["successCount"] == 78
        assert result["status"] == "completed_with_errors"

        small = MockLoader(error_rate=0.02)
        assert small.load("OBJ", [{"i": i} for i in range(49)])["errorCount"] == 0
        assert small.load("OBJ", [{"i": i} for i in range(50)])["errorCount"] == 1

    def test_failed_rows_repeat(self):
        from migration.lifecycle import MockLoader
        records = [{"i": i} for i in range(500)]
        first = MockLoader(error_rate=0.1, seed=5).load("OBJ", records)
        second = MockLoader(error_rate=0.1, seed=5).load("OBJ", records)
        assert first["failedRows"] == second["failedRows"]
        assert len(first["failedRows"]) == 50
        assert first["batches"] == 5

    def test_invalid_configuration(self):
        from migration.lifecycle import MockLoader
        with pytest.raises(ValueError):
            MockLoader(error_rate=1.5)
        with pytest.raises(ValueError):
            MockLoader(batch_size=0)


class TestBuiltinObjects:
    """Test the Business Partner and GL Balance runs."""

    def test_business_partner(self):
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_business_partner
        result = build_business_partner().run()

        assert result.status == MigrationStatus.COMPLETED_WITH_ERRORS
        assert result.phases["extract"]["recordCount"] == 80
        assert result.phases["transform"]["recordCount"] == 79
        assert result.phases["transform"]["mergedCount"] == 1
        assert result.phases["validate"]["status"] == "completed"
        assert result.stats["loadedRecords"] == 78
        assert result.stats["loadErrors"] == 1

    def test_partner_roles_merged(self):
        from migration.objects import build_business_partner
        records = build_business_partner().run(dry_run=True).phases["transform"]["records"]
        merged = records[0]
        assert merged["BusinessPartnerFullName"] == "Customer Corp 1"
        assert merged["_roles"] == ["FLCU01", "FLVN01"]
        assert merged["Supplier"] == "0000200001"
        assert merged["Country"] == "US"

    def test_gl_balance(self):
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_gl_balance
        result = build_gl_balance().run()

        assert result.status == MigrationStatus.COMPLETED
        assert result.stats["extractedRecords"] == 40
        assert result.stats["validationStatus"] == "passed"
        assert result.stats["loadedRecords"] == 40
        record = result.phases["transform"]["records"][0]
        assert record["GLAccount"] == "0000100000"
        assert record["FiscalPeriod"] == 12
        assert record["BalanceKey"] == "1000-100000-2024"

    def test_validation_failure_skips_load(self):
        from migration.extractors import StaticExtractor
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_gl_balance
        extractor = StaticExtractor("FI_BAD", "Bad balances", {"balances": [_gl_row(), _gl_row(company="3000")]})
        result = build_gl_balance(extractor=extractor).run()

        assert result.status == MigrationStatus.VALIDATION_FAILED
        assert result.load_skipped
        assert result.phases["load"] == {"status": "skipped", "reason": "Validation errors found"}
        assert result.stats["loadedRecords"] == 0

    def test_dry_run_skips_load(self):
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_gl_balance
        result = build_gl_balance().run(dry_run=True)
        assert result.status == MigrationStatus.COMPLETED
        assert result.dry_run
        assert result.phases["load"] == {"status": "skipped", "reason": "Dry run"}

    def test_live_mode_ends_in_error(self):
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_gl_balance
        result = build_gl_balance(mode="live").run()
        assert result.status == MigrationStatus.ERROR
        assert "Live extraction not implemented" in result.error
        assert result.to_dict()["error"] == result.error

    def test_loader_failure_ends_in_error(self):
        from migration.lifecycle import Loader, LoaderError, MigrationStatus
        from migration.objects import build_gl_balance

        class RejectingLoader(Loader):
            def load(self, object_id, records):
                raise LoaderError("Target unavailable", object_id)

        result = build_gl_balance(loader=RejectingLoader()).run()
        assert result.status == MigrationStatus.ERROR
        assert result.error == "Target unavailable"
        assert "validate" in result.phases

    def test_empty_extract(self):
        from migration.extractors import StaticExtractor
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_gl_balance
        result = build_gl_balance(extractor=StaticExtractor("FI_EMPTY", "Empty", {"balances": []})).run()
        assert result.status == MigrationStatus.COMPLETED
        assert list(result.phases) == ["extract"]

    def test_to_dict_hides_records(self):
        from migration.objects import build_gl_balance
        result = build_gl_balance().run()
        assert "records" not in result.to_dict()["phases"]["extract"]
        assert len(result.to_dict(include_records=True)["phases"]["extract"]["records"]) == 40

    def test_catalogue(self):
        from migration.objects import build_migration_objects
        objects = build_migration_objects()
        assert sorted(objects) == ["BUSINESS_PARTNER", "GL_BALANCE"]
        described = objects["GL_BALANCE"].to_dict()
        assert described["extractorId"] == "FI_TRANSACTIONS"
        assert described["qualityChecks"]["referential"][0]["validSet"] == ["1000", "2000"]

        checks = objects["BUSINESS_PARTNER"].get_quality_checks()
        assert "BusinessPartnerFullName" in checks.required
        assert checks.fuzzy_duplicate is not None


class TestGatedRuns:
    """Test run_with_gate through tiers, approvals and audit."""

    @pytest.fixture
    def gate(self):
        from core.audit.events import AuditLogger, InMemoryAuditBackend
        from core.security.approval import ApprovalGate
        from core.security.gate import OperationGate
        from core.security.tiers import TierManager
        tiers = TierManager()
        audit = AuditLogger([InMemoryAuditBackend()])
        return OperationGate(tiers, ApprovalGate(tiers, audit_logger=audit), audit)

    def test_staging_load_requires_approval(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        from migration.objects import build_gl_balance
        decision = build_gl_balance().run_with_gate(gate, UserContext("u1", max_tier=3))

        assert decision.status == GateStatus.APPROVAL_REQUIRED
        assert decision.result is None
        assert gate.audit_logger.query(event="migration.start")["total"] == 0

    def test_approved_staging_load(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        from migration.lifecycle import MigrationStatus
        from migration.objects import build_gl_balance

        request = gate.approval_gate.request_approval("migration.load_staging", "u1")
        gate.approval_gate.approve(request.request_id, "u2")
        decision = build_gl_balance().run_with_gate(
            gate, UserContext("u1", max_tier=3), approval_id=request.request_id)

        assert decision.status == GateStatus.EXECUTED
        assert decision.result.status == MigrationStatus.COMPLETED
        events = [e.event for e in gate.audit_logger.query(actor="u1")["entries"]]
        assert "migration.start" in events
        assert "migration.complete" in events
        assert "operation.execute" in events

    def test_dry_run_needs_no_approval(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        from migration.objects import build_gl_balance
        decision = build_gl_balance().run_with_gate(gate, UserContext("u1", max_tier=3), dry_run=True)

        assert decision.status == GateStatus.DRY_RUN
        assert decision.result.dry_run
        assert decision.to_dict()["result"]["phases"]["load"]["reason"] == "Dry run"

    def test_sandbox_load_runs_directly(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        from migration.objects import build_gl_balance
        decision = build_gl_balance().run_with_gate(
            gate, UserContext("dev", max_tier=2), operation="migration.load_sandbox")
        assert decision.status == GateStatus.EXECUTED

    def test_production_load_needs_role(self, gate):
        from core.security.gate import GateStatus
        from core.security.tiers import UserContext
        from migration.objects import build_gl_balance
        decision = build_gl_balance().run_with_gate(
            gate, UserContext("ops", max_tier=4), operation="migration.load_production")
        assert decision.status == GateStatus.DENIED
        assert "role" in decision.reason

    def test_failed_run_audited_as_failure(self, gate):
        from core.security.tiers import UserContext
        from migration.objects import build_gl_balance
        build_gl_balance(mode="live").run_with_gate(
            gate, UserContext("dev", max_tier=2), operation="migration.load_sandbox")

        failed = gate.audit_logger.query(event="migration.fail")["entries"]
        assert len(failed) == 1
        assert failed[0].outcome.value == "failure"
        assert gate.audit_logger.query(event="operation.failed")["total"] == 1
