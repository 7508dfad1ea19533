"""Thread usage report generator.

Runs one ingestion for the requested range, derives tool usage and
conversation analytics from the records, and renders everything as a
markdown report with plain-text tables.  Sections whose data is missing
render a placeholder line so a partial report is always produced.
"""

import logging
from datetime import UTC, datetime
from typing import TypedDict

from src.analysis.conversations import summarize_conversations, workflow_usage
from src.analysis.extractor import DEFAULT_MAX_LATENCY_SECONDS, ToolExtractor
from src.analysis.models import ConversationSummary, ToolRate, ToolStatistics, ToolUsage, WorkflowUsage
from src.analysis.usage import contact_rate, summarize_tool_usage, travel_agent_rate
from src.config import get_settings
from src.ingest.cache import RangeCache
from src.ingest.models import ChunkStatus, IngestionResult
from src.ingest.orchestrator import ProgressCallback, run_ingestion

logger = logging.getLogger(__name__)

TOP_WORKFLOWS = 10


# ---------------------------------------------------------------------------
# Structured data types
# ---------------------------------------------------------------------------


class ReportData(TypedDict):
    generated_at: str
    range_start: str
    range_end: str
    environment: str
    from_cache: bool
    thread_count: int
    chunk_statuses: list[ChunkStatus]
    tool_usage: list[ToolUsage]
    conversations: ConversationSummary | None
    contact_rate: ToolRate
    travel_agent_rate: ToolRate
    workflows: list[WorkflowUsage]


def _format_plain_table(
    headers: list[str],
    rows: list[list[str]],
    right_align: set[int] | None = None,
) -> str:
    """Format a plain-text table with aligned columns (no pipe characters).

    Args:
        headers: Column header strings.
        rows: List of rows, each a list of cell strings.
        right_align: Set of column indices (0-based) to right-align.

    Returns:
        Multi-line string with padded columns separated by two spaces.
    """
    right_align = right_align or set()
    if not rows:
        return ""
    widths = [max(len(row[i]) for row in [headers, *rows]) for i in range(len(headers))]

    def fmt_row(cells: list[str]) -> str:
        return "  ".join(
            cell.rjust(widths[i]) if i in right_align else cell.ljust(widths[i]) for i, cell in enumerate(cells)
        )

    lines = [fmt_row(headers), "  ".join("-" * w for w in widths)]
    lines.extend(fmt_row(row) for row in rows)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def build_report_data(
    result: IngestionResult,
    start: datetime,
    end: datetime,
    *,
    environment: str = "staging",
    max_latency_seconds: float = DEFAULT_MAX_LATENCY_SECONDS,
) -> ReportData:
    """Derive tool usage, tool rates, conversation summary and workflow shares from an ingestion result."""
    records = result.records
    observations = ToolExtractor(max_latency_seconds=max_latency_seconds).extract(records)

    return ReportData(
        generated_at=datetime.now(UTC).isoformat(),
        range_start=start.isoformat(),
        range_end=end.isoformat(),
        environment=environment,
        from_cache=result.from_cache,
        thread_count=len(records),
        chunk_statuses=result.chunk_statuses,
        tool_usage=summarize_tool_usage(observations),
        conversations=summarize_conversations(records, start, end) if records else None,
        contact_rate=contact_rate(records, observations),
        travel_agent_rate=travel_agent_rate(records, observations),
        workflows=workflow_usage(records)[:TOP_WORKFLOWS],
    )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def _seconds(value: float) -> str:
    return f"{value:.2f}"


def _format_interval(stats: ToolStatistics) -> str:
    ci = stats.confidence_interval
    if ci is None:
        return "-"
    return f"{ci.lower:.2f}-{ci.upper:.2f}"


def _format_tool_row(usage: ToolUsage) -> list[str]:
    stats = usage.statistics
    if stats.count == 0:
        return [usage.tool_name, str(usage.count), "0", "-", "-", "-", "-", "-", stats.significance.category]
    confidence = stats.significance.confidence_percent
    variability = stats.significance.category + (f" ({confidence:.0f}%)" if confidence else "")
    return [
        usage.tool_name,
        str(usage.count),
        str(stats.count),
        _seconds(stats.mean),
        _seconds(stats.std_dev),
        f"{stats.coefficient_of_variation:.1f}",
        _format_interval(stats),
        str(len(stats.outliers)),
        variability,
    ]


def _format_rate(label: str, rate: ToolRate) -> str:
    tools = f" via {', '.join(rate.matching_tools)}" if rate.matching_tools else ""
    return f"- **{label}:** {rate.percentage:.2f}% ({rate.conversations} of {rate.total_conversations} threads){tools}"


def format_report_markdown(data: ReportData) -> str:
    """Convert structured ReportData into a readable markdown report."""
    lines: list[str] = []
    lines.append("# Thread Usage Report")
    lines.append("")
    lines.append(f"**Generated:** {data['generated_at']}")
    lines.append(f"**Range:** {data['range_start']} - {data['range_end']}")
    lines.append(f"**Environment:** {data['environment']}")
    lines.append(f"**Threads:** {data['thread_count']}" + (" (cached)" if data["from_cache"] else ""))
    lines.append("")

    # 1. Fetch status
    lines.append("## Fetch Status")
    lines.append("")
    statuses = data["chunk_statuses"]
    if data["from_cache"]:
        lines.append("*Served from cache; no chunks fetched.*")
    elif not statuses:
        lines.append("*No chunks in range.*")
    else:
        lines.append(
            _format_plain_table(
                ["#", "Window", "Status", "Detail"],
                [[str(s.chunk_index + 1), s.label, s.status, s.message or ""] for s in statuses],
                right_align={0},
            )
        )
        failed = [s for s in statuses if not (s.status.isdigit() and s.status.startswith("2"))]
        if failed:
            lines.append("")
            lines.append(f"{len(failed)} of {len(statuses)} chunks failed; figures below are partial.")
    lines.append("")

    # 2. Tool usage
    lines.append("## Tool Usage")
    lines.append("")
    usage = data["tool_usage"]
    if not usage:
        lines.append("*No tool calls detected.*")
    else:
        lines.append(
            _format_plain_table(
                ["Tool", "Calls", "Samples", "Mean (s)", "Std Dev", "CV %", "95% CI", "Outliers", "Variability"],
                [_format_tool_row(u) for u in usage],
                right_align={1, 2, 3, 4, 5, 7},
            )
        )
    lines.append("")
    for label, rate in (("Contact rate", data["contact_rate"]), ("Travel agent rate", data["travel_agent_rate"])):
        lines.append(_format_rate(label, rate))
    lines.append("")

    # 3. Conversations
    lines.append("## Conversations")
    lines.append("")
    summary = data["conversations"]
    if summary is None:
        lines.append("*No conversation data.*")
    else:
        lines.append(f"- **Threads:** {summary.total_threads}")
        lines.append(f"- **Conversations:** {summary.total_conversations}")
        lines.append(
            f"- **Messages:** {summary.total_user_messages} user, {summary.total_assistant_messages} assistant"
            f" ({summary.avg_messages_per_conversation} per conversation)"
        )
        lines.append(f"- **Avg duration:** {summary.avg_duration_minutes} min")
        lines.append(f"- **Avg time to first response:** {summary.avg_time_to_first_response_seconds} s")
        lines.append(f"- **With errors:** {summary.conversations_with_errors} ({summary.error_percentage}%)")
        lines.append(f"- **Per day:** {summary.avg_conversations_per_day} avg over {summary.active_days} active days")
        if summary.peak_day is not None:
            lines.append(f"- **Peak day:** {summary.peak_day.day.isoformat()} ({summary.peak_day.conversations})")
    lines.append("")

    # 4. Workflows
    lines.append("## Workflows")
    lines.append("")
    workflows = data["workflows"]
    if not workflows:
        lines.append("*No workflows mentioned.*")
    else:
        lines.append(
            _format_plain_table(
                ["Workflow", "Threads", "Share %"],
                [[w.workflow, str(w.count), f"{w.percentage:.2f}"] for w in workflows],
                right_align={1, 2},
            )
        )
    lines.append("")

    return "\n".join(lines)


async def generate_report(
    start: datetime,
    end: datetime,
    *,
    force_refresh: bool = False,
    cache: RangeCache | None = None,
    on_progress: ProgressCallback | None = None,
) -> str:
    """Fetch ``[start, end)`` and return the usage report as markdown.

    Raises:
        ConfigError: If the API token is not configured and the range is not cached.
    """
    settings = get_settings()
    result = await run_ingestion(
        start,
        end,
        cache=cache,
        on_progress=on_progress,
        force_refresh=force_refresh,
        settings=settings,
    )
    data = build_report_data(
        result,
        start,
        end,
        environment=settings.environment,
        max_latency_seconds=settings.max_latency_seconds,
    )
    return format_report_markdown(data)
