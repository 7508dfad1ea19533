"""Conversation-level analytics: message counts, durations, daily volume, errors.

All functions take canonical ``ConversationRecord``s and are pure.
"""

import re
from collections.abc import Sequence
from datetime import date, datetime, timedelta

from src.analysis.models import ConversationMetrics, ConversationSummary, DailyCount, WorkflowUsage
from src.ingest.models import ConversationRecord, Message, ensure_aware

_ERROR_ROLES = frozenset({"system", "status"})

ERROR_PATTERNS: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"Agent execution error",
        r"Error:",
        r"Failed:",
        r"Exception:",
        r"Timeout",
        r"Connection error",
        r"Invalid",
        r"Not found",
        r"Unauthorized",
        r"Forbidden",
    )
]

_WORKFLOW_LIST = re.compile(r"\*\s*\*\*Workflows:\*\*\s*`([^`]+)`")
_WORKFLOW_NAME = re.compile(r"\bworkflow-[\w-]+")


def _first_timestamp(messages: Sequence[Message], role: str) -> datetime | None:
    stamps = [m.created_at for m in messages if m.role == role and m.created_at is not None]
    return min(stamps) if stamps else None


def conversation_metrics(record: ConversationRecord) -> ConversationMetrics:
    """Message counts, duration (first to last message) and time to first response.

    Time to first response is measured from the earliest user message to the
    earliest assistant message, and is 0 when either is missing or the
    assistant did not answer after the user.
    """
    messages = record.messages
    user_messages = sum(1 for m in messages if m.role == "user")
    assistant_messages = sum(1 for m in messages if m.role == "assistant")

    stamps = sorted(m.created_at for m in messages if m.created_at is not None)
    duration = (stamps[-1] - stamps[0]).total_seconds() if len(stamps) > 1 else 0.0

    first_user = _first_timestamp(messages, "user")
    first_assistant = _first_timestamp(messages, "assistant")
    first_response = 0.0
    if first_user is not None and first_assistant is not None and first_assistant > first_user:
        first_response = (first_assistant - first_user).total_seconds()

    return ConversationMetrics(
        record_id=record.id,
        user_messages=user_messages,
        assistant_messages=assistant_messages,
        total_messages=user_messages + assistant_messages,
        duration_seconds=duration,
        time_to_first_response_seconds=first_response,
    )


def conversations_per_day(
    records: Sequence[ConversationRecord],
    start: datetime,
    end: datetime,
) -> list[DailyCount]:
    """Distinct conversations per calendar day of ``[start, end)``, zero days included.

    Days are taken in ``start``'s timezone.
    """
    start, end = ensure_aware(start), ensure_aware(end)
    tz = start.tzinfo
    by_day: dict[date, set[str]] = {}
    for record in records:
        day = record.created_at.astimezone(tz).date()
        by_day.setdefault(day, set()).add(record.id)

    last_day = (end.astimezone(tz) - timedelta(microseconds=1)).date() if end > start else start.date()
    days: list[DailyCount] = []
    current = start.date()
    while current <= last_day:
        days.append(DailyCount(day=current, conversations=len(by_day.get(current, ()))))
        current += timedelta(days=1)
    return days


def has_errors(record: ConversationRecord) -> bool:
    """True if any system or status message text matches a known error pattern."""
    for message in record.messages:
        if message.role not in _ERROR_ROLES:
            continue
        for text in message.texts():
            if any(pattern.search(text) for pattern in ERROR_PATTERNS):
                return True
    return False


def extract_workflows(record: ConversationRecord) -> set[str]:
    """Workflow names mentioned in system and status messages."""
    workflows: set[str] = set()
    for message in record.messages:
        if message.role not in _ERROR_ROLES:
            continue
        for text in message.texts():
            for listing in _WORKFLOW_LIST.findall(text):
                workflows.update(name.strip() for name in listing.split(",") if name.strip())
            workflows.update(_WORKFLOW_NAME.findall(text))
    return workflows


def workflow_usage(records: Sequence[ConversationRecord]) -> list[WorkflowUsage]:
    """Threads per workflow, most used first.

    The percentage is taken over all threads in ``records``, so a thread that
    runs several workflows counts towards each of them.
    """
    counts: dict[str, int] = {}
    for record in records:
        for workflow in extract_workflows(record):
            counts[workflow] = counts.get(workflow, 0) + 1

    total = len(records)
    usage = [
        WorkflowUsage(workflow=name, count=count, percentage=round(100 * count / total, 2))
        for name, count in counts.items()
    ]
    usage.sort(key=lambda w: (-w.count, w.workflow))
    return usage


def _avg(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def summarize_conversations(
    records: Sequence[ConversationRecord],
    start: datetime,
    end: datetime,
) -> ConversationSummary:
    """Roll per-record metrics up into one summary for the range."""
    metrics = [conversation_metrics(r) for r in records]
    daily = conversations_per_day(records, start, end)
    with_errors = sum(1 for r in records if has_errors(r))

    peak_day = max(daily, key=lambda d: d.conversations, default=None)
    if peak_day is not None and peak_day.conversations == 0:
        peak_day = None

    return ConversationSummary(
        total_threads=len(records),
        total_conversations=len({r.conversation_id or r.id for r in records}),
        total_user_messages=sum(m.user_messages for m in metrics),
        total_assistant_messages=sum(m.assistant_messages for m in metrics),
        avg_messages_per_conversation=_avg([m.total_messages for m in metrics]),
        avg_duration_minutes=_avg([m.duration_seconds / 60 for m in metrics]),
        avg_time_to_first_response_seconds=_avg([m.time_to_first_response_seconds for m in metrics]),
        conversations_with_errors=with_errors,
        error_percentage=round(100 * with_errors / len(records), 1) if records else 0.0,
        avg_conversations_per_day=_avg([d.conversations for d in daily]),
        active_days=sum(1 for d in daily if d.conversations > 0),
        peak_day=peak_day,
    )
