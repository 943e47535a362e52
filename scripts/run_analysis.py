"""
Run the process intelligence analysis over an event log file.

Reads a CSV (caseId, activity, timestamp, resource, ...) or a JSON event
log, runs all analyzers against a built-in reference process and prints a
short summary.

Usage:
    python scripts/run_analysis.py orders.csv --process O2C
    python scripts/run_analysis.py log.json --process P2P --output report.json
    python scripts/run_analysis.py orders.csv --process O2C --save
    python scripts/run_analysis.py --list-processes
"""

import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import get_settings
from core.observability.logging import configure_logging
from core.storage.artifacts import ArtifactStore
from process_mining.engine import PHASES, ProcessIntelligenceEngine, UnknownProcessError
from process_mining.event_log import EventLog, LogIntegrityError
from process_mining.reference_models import get_default_registry


def load_event_log(path: Path) -> EventLog:
    """CSV by extension; anything else is parsed as JSON (flat rows or {traces})."""
    if path.suffix.lower() == ".csv":
        return EventLog.from_csv(path)

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        return EventLog.from_records(data, name=path.stem)
    return EventLog.from_dict(data)


def print_summary(report) -> None:
    summary = report.get_summary()
    health = report.executive_summary.get("overallHealth")

    print(f"\n{'=' * 60}")
    print(f"Process intelligence: {summary['processId'] or 'custom'} ({summary['referenceModel'] or 'no model'})")
    print(f"{'=' * 60}")
    print(f"  Cases:        {summary['cases']}")
    print(f"  Events:       {summary['events']}")
    print(f"  Variants:     {summary['variantCount']}")
    if summary["fitness"] is not None:
        print(f"  Fitness:      {summary['fitness']:.3f}")
        print(f"  Precision:    {summary['precision']:.3f}")
    print(f"  Bottlenecks:  {summary['bottleneckCount']}")
    print(f"  SoD issues:   {summary['sodViolations']}")
    print(f"  Health:       {health}")
    print(f"  Duration:     {summary['duration']} ms")

    if report.recommendations:
        print("\nRecommendations:")
        for rec in report.recommendations:
            print(f"  [{rec['severity'].upper():6}] {rec['title']}")
    for error in report.errors:
        print(f"\n  ! {error['phase']}: {error['message']}")
    for skipped in report.skipped:
        print(f"  - skipped {skipped['phase']}: {skipped['reason']}")


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Run process intelligence on an event log")
    parser.add_argument("log", nargs="?", help="Event log file (.csv or .json)")
    parser.add_argument("--process", "-p", help="Built-in reference process id (e.g. O2C, P2P)")
    parser.add_argument("--skip", action="append", choices=PHASES, default=[], help="Phase to skip (repeatable)")
    parser.add_argument("--output", "-o", help="Write the full report JSON to this file")
    parser.add_argument("--save", action="store_true", help="Store the report under the artifacts directory")
    parser.add_argument("--list-processes", action="store_true", help="List built-in reference processes")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    args = parser.parse_args()
    configure_logging(json_format=args.json_logs)

    if args.list_processes:
        for model in get_default_registry().list_models():
            print(f"  {model['id']:5} {model['name']:35} {model['activities']:3} activities, {model['edges']:3} edges")
        return

    if not args.log:
        parser.error("an event log file is required")

    path = Path(args.log)
    if not path.exists():
        print(f"ERROR: File not found: {path}", file=sys.stderr)
        sys.exit(1)

    try:
        log = load_event_log(path)
        report = ProcessIntelligenceEngine().analyze(log, process_id=args.process, skip=args.skip)
    except (ValueError, LogIntegrityError, UnknownProcessError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print_summary(report)

    if args.output:
        Path(args.output).write_text(report.to_json(), encoding="utf-8")
        print(f"\nReport written to: {args.output}")
    if args.save:
        store = ArtifactStore(get_settings().artifacts_dir)
        ref = store.put_json(report.to_dict(), f"reports/{report.run_id}.json")
        print(f"\nReport stored: {ref.storage_uri} (sha256 {ref.content_hash[:12]})")


if __name__ == "__main__":
    main()
