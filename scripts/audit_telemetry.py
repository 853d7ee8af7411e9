"""
CLI entry point for auditing telemetry records.
"""

import asyncio
import argparse
import json
import sys
from collections import Counter
from pathlib import Path
from typing import List, Dict, Any

from src.persistence.store import SQLiteDocumentStore
from src.persistence.worker import TelemetryAuditWorker
from src.shared.logging import setup_logging
from src.validation.pipeline import ValidationPipeline


def load_records(path: Path) -> List[Dict[str, Any]]:
    """Read a JSON array, a single JSON object or JSON lines."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text[0] == "[":
        return json.loads(text)
    if text[0] == "{" and "\n" not in text:
        return [json.loads(text)]
    return [json.loads(line) for line in text.splitlines() if line.strip()]


async def audit_store(db_path: Path) -> int:
    """Drain every unaudited row of the document store."""
    worker = TelemetryAuditWorker(SQLiteDocumentStore(db_path))
    total = 0
    while True:
        done = await worker.process_batch()
        if not done:
            break
        total += done
    return total


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Audit telemetry records")
    parser.add_argument(
        "input",
        type=Path,
        nargs="?",
        help="JSON or JSONL file of telemetry records"
    )
    parser.add_argument(
        "--db",
        type=Path,
        help="Audit unaudited telemetry stored in this SQLite file instead"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print full reports as JSON lines"
    )
    parser.add_argument(
        "--no-insights",
        action="store_true",
        help="Skip the insight tier"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 if any record FAILs"
    )

    args = parser.parse_args()
    if args.input is None and args.db is None:
        parser.error("an input file or --db is required")

    setup_logging(log_level="WARNING")

    if args.db is not None:
        audited = await audit_store(args.db)
        print(f"Audited {audited} telemetry rows in {args.db}")
        return 0

    records = load_records(args.input)
    pipeline = ValidationPipeline(insights_enabled=not args.no_insights)
    reports = pipeline.run_many(records)

    if args.json:
        for report in reports:
            print(json.dumps(report.to_dict()))
        return 1 if args.strict and any(not r.passed for r in reports) else 0

    failed = [r for r in reports if not r.passed]
    codes = Counter(code for r in reports for code in r.codes())
    insights = Counter(i.code for r in reports for i in r.insights)
    quality = sum(r.quality_score for r in reports) / len(reports) if reports else 0.0

    print("\n" + "=" * 50)
    print("Telemetry Audit Summary")
    print("=" * 50)
    print(f"Records audited: {len(reports)}")
    print(f"Passed: {len(reports) - len(failed)}")
    print(f"Failed: {len(failed)}")
    print(f"Mean quality score: {quality:.3f}")
    for code, count in codes.most_common():
        print(f"  {code}: {count}")
    if insights:
        print("Insights:")
        for code, count in insights.most_common():
            print(f"  {code}: {count}")
    print("=" * 50)

    return 1 if args.strict and failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
