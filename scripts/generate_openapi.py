"""
Export the OpenAPI document of the migration toolkit API.

Writes the JSON document to stdout or a file and can print an endpoint
inventory grouped by tag (Health, Process Mining, Security, Migration,
Audit).

Usage:
    python scripts/generate_openapi.py                       # Print to stdout
    python scripts/generate_openapi.py --output openapi.json
    python scripts/generate_openapi.py --output openapi.json --inventory
"""

import json
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.server import create_app


REQUIRED_KEYS = ("openapi", "info", "paths")


def build_openapi_document() -> dict:
    return create_app().openapi()


def endpoints_by_tag(document: dict) -> Dict[str, List[str]]:
    """``{tag: ["GET /health", ...]}``; untagged operations land under "untagged"."""
    grouped: Dict[str, List[str]] = defaultdict(list)
    for path, methods in document.get("paths", {}).items():
        for method, operation in methods.items():
            for tag in operation.get("tags") or ["untagged"]:
                grouped[tag].append(f"{method.upper()} {path}")
    return {tag: sorted(entries) for tag, entries in sorted(grouped.items())}


def write_document(document: dict, output_path: Optional[str] = None) -> None:
    text = json.dumps(document, indent=2)
    if output_path:
        Path(output_path).write_text(text + "\n", encoding="utf-8")
        print(f"OpenAPI document written to: {output_path}", file=sys.stderr)
    else:
        print(text)


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Export the OpenAPI document")
    parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    parser.add_argument(
        "--inventory",
        action="store_true",
        help="Print endpoints grouped by tag to stderr",
    )
    args = parser.parse_args()

    document = build_openapi_document()
    missing = [key for key in REQUIRED_KEYS if key not in document]
    if missing:
        print(f"ERROR: OpenAPI document lacks: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    write_document(document, args.output)

    if args.inventory:
        print(f"\n{document['info']['title']} {document['info']['version']}", file=sys.stderr)
        for tag, entries in endpoints_by_tag(document).items():
            print(f"  {tag} ({len(entries)})", file=sys.stderr)
            for entry in entries:
                print(f"    {entry}", file=sys.stderr)


if __name__ == "__main__":
    main()
