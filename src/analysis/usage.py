"""Aggregate tool call observations into per-tool usage, latency statistics and tool category rates."""

import logging
from collections import defaultdict
from collections.abc import Collection, Iterable, Sequence

from src.analysis.conversations import extract_workflows
from src.analysis.models import ToolCallObservation, ToolRate, ToolUsage
from src.analysis.statistics import summarize
from src.ingest.models import ConversationRecord

logger = logging.getLogger(__name__)

# Orchestration tools the agent calls on itself; not user-facing usage
INTERNAL_TOOLS = frozenset({"setWorkflows", "controlPage", "display_links"})

CONTACT_KEYWORDS = ("send-message-to-customer-service", "callback", "contact", "customer-service", "support")
TRAVEL_AGENT_KEYWORDS = (
    "travel",
    "booking",
    "flight",
    "hotel",
    "reservation",
    "trip",
    "destination",
    "agent",
    "offer",
    "basket",
)
TRAVEL_AGENT_WORKFLOW = "workflow-travel-agent"


def summarize_tool_usage(
    observations: Iterable[ToolCallObservation],
    exclude: Collection[str] = INTERNAL_TOOLS,
) -> list[ToolUsage]:
    """Group observations by tool name, most used first.

    ``count`` is the number of observations for the tool; statistics are
    computed over the observations that carry a response latency. Ties in
    count are broken by name.
    """
    counts: dict[str, int] = defaultdict(int)
    latencies: dict[str, list[float]] = defaultdict(list)
    for observation in observations:
        if observation.tool_name in exclude:
            continue
        counts[observation.tool_name] += 1
        if observation.response_latency_seconds is not None:
            latencies[observation.tool_name].append(observation.response_latency_seconds)

    usage = [
        ToolUsage(
            tool_name=name,
            count=count,
            latencies=latencies[name],
            statistics=summarize(name, latencies[name]),
        )
        for name, count in counts.items()
    ]
    usage.sort(key=lambda u: (-u.count, u.tool_name))
    logger.debug("Summarized %d distinct tools", len(usage))
    return usage


def matches_keywords(tool_name: str, keywords: Iterable[str]) -> bool:
    """True if the lowercased tool name contains any of ``keywords``."""
    lowered = tool_name.lower()
    return any(keyword in lowered for keyword in keywords)


def is_contact_tool(tool_name: str) -> bool:
    return matches_keywords(tool_name, CONTACT_KEYWORDS)


def is_travel_agent_tool(tool_name: str) -> bool:
    return matches_keywords(tool_name, TRAVEL_AGENT_KEYWORDS)


def tool_rate(
    records: Sequence[ConversationRecord],
    observations: Iterable[ToolCallObservation],
    keywords: Iterable[str],
    workflows: Collection[str] = (),
) -> ToolRate:
    """Share of ``records`` that called a tool matching ``keywords`` or ran one of ``workflows``.

    Observations are attributed to threads by ``record_id``; observations
    without one are ignored. The percentage is rounded to 2 decimals and is 0
    for an empty range.
    """
    keywords = tuple(keywords)
    matching: dict[str, set[str]] = defaultdict(set)
    for observation in observations:
        if observation.record_id is not None and matches_keywords(observation.tool_name, keywords):
            matching[observation.record_id].add(observation.tool_name)

    hits = 0
    for record in records:
        if matching.get(record.id) or (workflows and not extract_workflows(record).isdisjoint(workflows)):
            hits += 1

    total = len(records)
    return ToolRate(
        matching_tools=sorted(set().union(*matching.values())),
        conversations=hits,
        total_conversations=total,
        percentage=round(100 * hits / total, 2) if total else 0.0,
    )


def contact_rate(records: Sequence[ConversationRecord], observations: Iterable[ToolCallObservation]) -> ToolRate:
    """Share of threads in which the assistant reached for a customer-contact tool."""
    return tool_rate(records, observations, CONTACT_KEYWORDS)


def travel_agent_rate(records: Sequence[ConversationRecord], observations: Iterable[ToolCallObservation]) -> ToolRate:
    """Share of threads that used a travel tool or ran the travel agent workflow."""
    return tool_rate(records, observations, TRAVEL_AGENT_KEYWORDS, workflows={TRAVEL_AGENT_WORKFLOW})
