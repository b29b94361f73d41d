"""Post every due recurring charge once; meant to be run from a system cron."""

from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, timezone

from expense_tracker.logging_config import get_logger, setup_logging
from expense_tracker.persistence import get_persistence
from expense_tracker.services.recurrence import run_batch

logger = get_logger("scripts.process_recurring")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="processing date (YYYY-MM-DD); defaults to today in UTC",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging()
    as_of = args.as_of or datetime.now(timezone.utc).date()
    try:
        result = run_batch(get_persistence(), as_of)
    except Exception:
        logger.exception("Recurring batch aborted")
        return 2
    print(f"Processed: {result.processed}, skipped: {result.skipped}, failed: {len(result.failures)}")
    for failure in result.failures:
        print(f"  {failure.charge_id}: {failure.error}")
    return 1 if result.failures else 0


if __name__ == "__main__":
    sys.exit(main())
