#!/usr/bin/env python
"""Import historical match approvals from a CSV file.

Each row becomes (or updates) a training example for the organization; rows
whose product cannot be resolved by SKU or catalog name are skipped and
listed at the end.

Usage:
    python backend/scripts/import_training_data.py --org-id <uuid> approvals.csv

CSV columns:
    query_text      Line item text as it appeared on the order (required)
    sku             Catalog SKU of the approved product
    catalog_name    Catalog name, used when sku is missing or unknown
    quality         excellent | good | fair | poor (default: good)
    confidence      0.0-1.0 (default: 0.8)

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

# Add backend/src to Python path
backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from partmatch.database import SessionLocal  # noqa: E402
from partmatch.feedback.services import FeedbackError, TrainingFeedbackRecorder  # noqa: E402
from partmatch.observability.logging_config import configure_logging  # noqa: E402


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import match training data from CSV")
    parser.add_argument("csv_file", type=Path, help="CSV file with a header row")
    parser.add_argument("--org-id", required=True, help="Organization UUID")
    parser.add_argument("--approved-by", default="csv-import", help="Recorded approver (default: csv-import)")
    parser.add_argument("--max-errors", type=int, default=50, help="Skipped rows to print (default: 50)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Run the import and print a summary."""
    args = parse_args(argv)
    configure_logging(level="WARNING", json_format=False)

    try:
        org_id = UUID(args.org_id)
    except ValueError:
        print(f"ERROR: Invalid --org-id format: {args.org_id}")
        print("--org-id must be a valid UUID")
        return 1

    if not args.csv_file.is_file():
        print(f"ERROR: CSV file not found: {args.csv_file}")
        return 1

    csv_text = args.csv_file.read_text(encoding="utf-8-sig")

    session = SessionLocal()
    try:
        recorder = TrainingFeedbackRecorder(session)
        result = recorder.import_training_csv(org_id, csv_text, approved_by=args.approved_by)
    except FeedbackError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        session.close()

    print(f"Rows:     {result.total_rows}")
    print(f"Created:  {result.created}")
    print(f"Updated:  {result.updated}")
    print(f"Skipped:  {result.skipped}")
    for error in result.errors[: args.max_errors]:
        print(f"  - {error}")
    if len(result.errors) > args.max_errors:
        print(f"  ... {len(result.errors) - args.max_errors} more")

    return 0


if __name__ == "__main__":
    sys.exit(main())
