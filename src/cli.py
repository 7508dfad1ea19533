"""Command-line interface for thread insights.

Usage:
    python -m src.cli fetch --start 2024-05-01T10:00 --end 2024-05-01T15:00
    python -m src.cli tools --start 2024-05-01 --end 2024-05-08
    python -m src.cli cache-stats
    python -m src.cli clear-cache
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from src.analysis.extractor import ToolExtractor
from src.analysis.usage import contact_rate, summarize_tool_usage, travel_agent_rate
from src.config import get_settings
from src.ingest.errors import ConfigError
from src.ingest.models import FetchProgress, IngestionResult
from src.ingest.orchestrator import build_cache, run_ingestion

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 datetime: {value!r}") from e


def _print_progress(progress: FetchProgress) -> None:
    print(f"  [{progress.current}/{progress.total}] {progress.current_label}", file=sys.stderr)


def _print_statuses(result: IngestionResult) -> None:
    if result.from_cache:
        print("Served from cache.")
        return
    for status in result.chunk_statuses:
        detail = f"  {status.message}" if status.message else ""
        print(f"  {status.label}  {status.status}{detail}")
    if result.failed_chunks:
        print(f"{len(result.failed_chunks)} of {len(result.chunk_statuses)} chunks failed.")


async def _fetch(args: argparse.Namespace) -> int:
    result = await run_ingestion(
        args.start,
        args.end,
        on_progress=None if args.quiet else _print_progress,
        force_refresh=args.refresh,
    )
    _print_statuses(result)
    print(f"Threads: {len(result.records)}")
    return 1 if result.all_failed else 0


async def _tools(args: argparse.Namespace) -> int:
    result = await run_ingestion(
        args.start,
        args.end,
        on_progress=None if args.quiet else _print_progress,
        force_refresh=args.refresh,
    )
    _print_statuses(result)
    extractor = ToolExtractor(max_latency_seconds=get_settings().max_latency_seconds)
    observations = extractor.extract(result.records)
    usage = summarize_tool_usage(observations)
    if not usage:
        print("No tool calls detected.")
    for tool in usage:
        stats = tool.statistics
        mean = f"{stats.mean:.2f}s" if stats.count else "-"
        print(f"  {tool.tool_name:<40} {tool.count:>6}  mean {mean:>8}  {stats.significance.category}")
    if result.records:
        for label, rate in (
            ("Contact rate", contact_rate(result.records, observations)),
            ("Travel agent rate", travel_agent_rate(result.records, observations)),
        ):
            print(f"{label}: {rate.percentage:.2f}% ({rate.conversations} of {rate.total_conversations} threads)")
    return 1 if result.all_failed else 0


def _cache_stats(_args: argparse.Namespace) -> int:
    cache = build_cache()
    stats = cache.stats()
    print(f"Scope:   {cache.scope}")
    print(f"Entries: {stats['entries']}")
    print(f"Records: {stats['records']}")
    print(f"Size:    {stats['size_bytes']} bytes")
    return 0


def _clear_cache(_args: argparse.Namespace) -> int:
    cache = build_cache()
    removed = cache.clear()
    print(f"Removed {removed} cache entries (scope={cache.scope}).")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fetch and analyse chatbot threads")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("fetch", "Fetch threads for a time range"), ("tools", "Tool usage for a time range")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--start", type=_parse_datetime, required=True, help="Inclusive start (ISO 8601)")
        cmd.add_argument("--end", type=_parse_datetime, required=True, help="Exclusive end (ISO 8601)")
        cmd.add_argument("--refresh", action="store_true", help="Ignore any cached entry for this range")
        cmd.add_argument("-q", "--quiet", action="store_true", help="Don't print per-chunk progress")

    sub.add_parser("cache-stats", help="Show range cache statistics")
    sub.add_parser("clear-cache", help="Remove all cached ranges")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse args and dispatch the subcommand."""
    args = _build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        if args.command == "fetch":
            code = asyncio.run(_fetch(args))
        elif args.command == "tools":
            code = asyncio.run(_tools(args))
        elif args.command == "cache-stats":
            code = _cache_stats(args)
        else:
            code = _clear_cache(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
