"""
Command-Line Script Tests

1. run_analysis loads CSV and JSON event logs and prints a summary
2. run_analysis writes the report and exits non-zero on bad input
3. generate_openapi groups endpoints by tag
"""

import json
import sys

import pytest

from conftest import O2C_HAPPY_PATH, repeated_log


class TestRunAnalysis:
    """Test the analysis CLI."""

    def test_load_csv_and_json(self, tmp_path):
        from scripts.run_analysis import load_event_log
        log = repeated_log(O2C_HAPPY_PATH, 2)

        csv_path = tmp_path / "orders.csv"
        csv_path.write_text(log.to_csv(), encoding="utf-8")
        assert load_event_log(csv_path).get_case_count() == 2

        json_path = tmp_path / "orders.json"
        json_path.write_text(log.to_json(), encoding="utf-8")
        assert load_event_log(json_path).get_event_count() == 2 * len(O2C_HAPPY_PATH)

        rows_path = tmp_path / "rows.json"
        rows_path.write_text(json.dumps([
            {"caseId": "C1", "activity": "A", "timestamp": "2024-01-01T09:00:00Z"},
        ]), encoding="utf-8")
        assert load_event_log(rows_path).name == "rows"

    def test_main_writes_report(self, tmp_path, monkeypatch, capsys):
        from scripts.run_analysis import main
        csv_path = tmp_path / "orders.csv"
        csv_path.write_text(repeated_log(O2C_HAPPY_PATH, 3).to_csv(), encoding="utf-8")
        output = tmp_path / "report.json"

        monkeypatch.setattr(sys, "argv", ["run_analysis.py", str(csv_path), "--process", "O2C",
                                          "--output", str(output)])
        main()

        printed = capsys.readouterr().out
        assert "Order to Cash" in printed
        assert "Health:       healthy" in printed
        report = json.loads(output.read_text(encoding="utf-8"))
        assert report["summary"]["cases"] == 3

    def test_main_unknown_process_exits(self, tmp_path, monkeypatch, capsys):
        from scripts.run_analysis import main
        csv_path = tmp_path / "orders.csv"
        csv_path.write_text(repeated_log(["A", "B"], 1).to_csv(), encoding="utf-8")

        monkeypatch.setattr(sys, "argv", ["run_analysis.py", str(csv_path), "--process", "XYZ"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "XYZ" in capsys.readouterr().err

    def test_list_processes(self, monkeypatch, capsys):
        from scripts.run_analysis import main
        monkeypatch.setattr(sys, "argv", ["run_analysis.py", "--list-processes"])
        main()
        assert "P2P" in capsys.readouterr().out


class TestGenerateOpenAPI:
    """Test the OpenAPI export."""

    def test_endpoints_grouped_by_tag(self):
        from scripts.generate_openapi import build_openapi_document, endpoints_by_tag
        grouped = endpoints_by_tag(build_openapi_document())

        assert set(grouped) == {"Health", "Process Mining", "Security", "Migration", "Audit"}
        assert "POST /process-mining/analyze" in grouped["Process Mining"]
        assert "POST /approvals/{request_id}/approve" in grouped["Security"]
        assert "GET /audit/stats" in grouped["Audit"]

    def test_writes_file(self, tmp_path):
        from scripts.generate_openapi import build_openapi_document, write_document
        output = tmp_path / "openapi.json"
        write_document(build_openapi_document(), str(output))
        assert json.loads(output.read_text(encoding="utf-8"))["info"]["title"] == "ERP Migration Intelligence API"
