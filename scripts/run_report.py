"""Generate a thread usage report and print it to stdout.

Usage:
    python -m scripts.run_report --start 2024-05-01 --end 2024-05-08
    python -m scripts.run_report --days 7
"""

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime, timedelta

from src.ingest.errors import ConfigError
from src.report.generator import generate_report

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


async def _run(start: datetime, end: datetime, force_refresh: bool) -> None:
    """Generate and print the report."""
    try:
        report = await generate_report(start, end, force_refresh=force_refresh)
        print(report)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Failed to generate report: {e}", file=sys.stderr)
        sys.exit(1)


def main() -> None:
    """Parse args and run the report."""
    parser = argparse.ArgumentParser(description="Generate a thread usage report")
    parser.add_argument("--start", type=datetime.fromisoformat, default=None, help="Inclusive start (ISO 8601)")
    parser.add_argument("--end", type=datetime.fromisoformat, default=None, help="Exclusive end (ISO 8601)")
    parser.add_argument("--days", type=int, default=1, help="Look back this many days when --start is omitted")
    parser.add_argument("--refresh", action="store_true", help="Ignore any cached entry for this range")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    end = args.end or datetime.now(UTC)
    start = args.start or end - timedelta(days=args.days)
    asyncio.run(_run(start, end, args.refresh))


if __name__ == "__main__":
    main()
