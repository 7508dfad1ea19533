"""Detect tool invocations in thread records.

The chatbot backend reports tool activity as free-text status messages
(``**Tool Name:** `x` ``, ``Tool Call Initiated (`x`)``, JSON fragments …),
sometimes as structured content items, and sometimes only by call id.
Extraction runs in two phases:

1. A pre-scan over every scanned message builds a ``call_id -> tool name``
   map from texts that show both.
2. Each content item runs through an ordered cascade of matchers; the first
   one that yields a usable name wins.  The last matcher resolves bare call
   ids through the pre-scan map.  Ids that cannot be resolved are dropped
   rather than counted under a made-up name.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from typing import Protocol

from src.analysis.models import ToolCallObservation
from src.ingest.models import (
    ContentItem,
    ConversationRecord,
    LinkoutContent,
    Message,
    TextContent,
    ToolCallContent,
    ToolUseContent,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_LATENCY_SECONDS = 300.0

_SCANNED_ROLES = frozenset({"status", "system", "assistant"})

# ---------------------------------------------------------------------------
# Name normalization
# ---------------------------------------------------------------------------

_WRAP_CHARS = " \t\r\n'\"`()[]{}"
_PHRASE_PREFIX = re.compile(
    r"^(?:tool\s*call\s*(?:initiated|completed)|(?:calling|using)\s+tool)\b[\W_]*(.*)$",
    re.IGNORECASE | re.DOTALL,
)
_WHITESPACE_RUN = re.compile(r"\s+")
_DISALLOWED_CHAR = re.compile(r"[^A-Za-z0-9._-]")
_HYPHEN_RUN = re.compile(r"-{2,}")


def _normalize_once(text: str) -> str:
    text = text.strip(_WRAP_CHARS)
    phrase = _PHRASE_PREFIX.match(text)
    if phrase:
        text = phrase.group(1).strip(_WRAP_CHARS)
    text = _WHITESPACE_RUN.sub("-", text)
    text = _DISALLOWED_CHAR.sub("-", text)
    text = _HYPHEN_RUN.sub("-", text)
    return text.strip("-")


def normalize_tool_name(raw: str | None) -> str | None:
    """Canonical form of a raw tool name, or None if nothing usable remains.

    Strips wrapping quotes, backticks, and brackets, unwraps status phrasings
    such as ``Tool Call Initiated (x)``, turns whitespace and any character
    outside ``[A-Za-z0-9._-]`` into single hyphens, and rejects results that
    are shorter than two characters or have no letter or digit.

    The steps are repeated until the text stops changing, so
    ``normalize_tool_name(normalize_tool_name(s)) == normalize_tool_name(s)``.
    """
    if raw is None:
        return None
    current = raw
    while True:
        normalized = _normalize_once(current)
        if normalized == current:
            break
        current = normalized
    if len(current) < 2 or not any(ch.isalnum() for ch in current):
        return None
    return current


# ---------------------------------------------------------------------------
# Call ids
# ---------------------------------------------------------------------------

_ID_TOKEN = r"[A-Za-z0-9][A-Za-z0-9_.:-]{2,}"
_CALL_ID_SHAPE = re.compile(r"(?:call|toolu|fc)_[A-Za-z0-9]{8,}")

_CALL_ID_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Call\s*ID:?\*{0,2}:?\s*`?(" + _ID_TOKEN + ")", re.IGNORECASE),
    re.compile(r'"(?:tool_call_id|call_id|callId)"\s*:\s*"([^"]+)"'),
    re.compile(r"\b((?:call|toolu|fc)_[A-Za-z0-9]{8,})\b"),
]

# (pattern, name group, id group): layouts showing a name next to its call id
_NAME_ID_PAIRS: list[tuple[re.Pattern[str], int, int]] = [
    (
        re.compile(
            r"\*\*Tool\s*Name:?\*\*:?\s*`([^`]+)`[^`]{0,200}?Call\s*ID:?\*{0,2}:?\s*`?(" + _ID_TOKEN + ")",
            re.IGNORECASE,
        ),
        1,
        2,
    ),
    (
        re.compile(
            r"Call\s*ID:?\*{0,2}:?\s*`?(" + _ID_TOKEN + r")`?[^`]{0,200}?\*\*Tool\s*Name:?\*\*:?\s*`([^`]+)`",
            re.IGNORECASE,
        ),
        2,
        1,
    ),
    (
        re.compile(
            r"Tool\s*Call\s*(?:Initiated|Completed)\W*`?([A-Za-z0-9_.-]+)`?\W*(?:id[:=]\s*)?"
            r"((?:call|toolu|fc)_[A-Za-z0-9]{8,})",
            re.IGNORECASE,
        ),
        1,
        2,
    ),
    (re.compile(r'"name"\s*:\s*"([^"]+)"[^{}]*?"(?:id|call_id|tool_call_id)"\s*:\s*"([^"]+)"'), 1, 2),
    (re.compile(r'"(?:id|call_id|tool_call_id)"\s*:\s*"([^"]+)"[^{}]*?"name"\s*:\s*"([^"]+)"'), 2, 1),
]


def looks_like_call_id(value: str) -> bool:
    return _CALL_ID_SHAPE.fullmatch(value.strip(_WRAP_CHARS)) is not None


def find_call_id(text: str) -> str | None:
    """First call id mentioned in ``text``, if any."""
    for pattern in _CALL_ID_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).rstrip(".:-")
    return None


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


class ToolNameMatcher(Protocol):
    name: str

    def try_extract(self, text: str) -> str | None: ...


class RegexMatcher:
    """Returns group 1 of the first pattern that matches."""

    def __init__(self, name: str, *patterns: str) -> None:
        self.name = name
        self._patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    def try_extract(self, text: str) -> str | None:
        for pattern in self._patterns:
            match = pattern.search(text)
            if match and match.group(1).strip():
                return match.group(1).strip()
        return None

    def __repr__(self) -> str:
        return f"RegexMatcher({self.name!r})"


class CallIdMatcher:
    """Resolves a bare call id through the pre-scan map."""

    name = "call-id"

    def __init__(self, call_ids: dict[str, str]) -> None:
        self._call_ids = call_ids

    def try_extract(self, text: str) -> str | None:
        call_id = find_call_id(text)
        if call_id is None:
            return None
        name = self._call_ids.get(call_id)
        if name is None:
            logger.debug("Dropping unresolved tool call id %s", call_id)
        return name


TOOL_NAME_MARKER = RegexMatcher("tool-name-marker", r"\*\*Tool\s*Name:?\*\*:?\s*`([^`]+)`")

STATUS_PHRASES = RegexMatcher(
    "status-phrase",
    r"Tool\s*Call\s*(?:Initiated|Completed)[^`\w]*`([^`]+)`",
    r"Tool\s*Call\s*(?:Initiated|Completed)[^A-Za-z0-9_-]*\(([^)]+)\)",
    r"Tool\s*Call\s*(?:Initiated|Completed)[:\s]+([A-Za-z0-9_\-.]+)",
    r"(?:Calling|Using)\s+tool[:\s]*`([^`]+)`",
)

JSON_FRAGMENTS = RegexMatcher(
    "json-fragment",
    r'"(?:tool_use|tool_call|function_call)"\s*:\s*\{[^{}]*?"name"\s*:\s*"([^"]+)"',
    r'"type"\s*:\s*"(?:tool_use|tool_call|function)"[^{}]*?"name"\s*:\s*"([^"]+)"',
    r'"tool_name"\s*:\s*"([^"]+)"',
)

DEFAULT_MATCHERS: tuple[ToolNameMatcher, ...] = (TOOL_NAME_MARKER, STATUS_PHRASES, JSON_FRAGMENTS)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


def _item_text(item: ContentItem) -> str:
    if isinstance(item, TextContent | LinkoutContent):
        return item.text
    return ""


def _scanned(messages: Iterable[Message]) -> Iterable[Message]:
    return (m for m in messages if m.role in _SCANNED_ROLES)


class ToolExtractor:
    """Turns thread records into ``ToolCallObservation``s."""

    def __init__(
        self,
        matchers: Sequence[ToolNameMatcher] = DEFAULT_MATCHERS,
        max_latency_seconds: float = DEFAULT_MAX_LATENCY_SECONDS,
    ) -> None:
        self._matchers = tuple(matchers)
        self._max_latency_seconds = max_latency_seconds

    def build_call_id_map(self, records: Iterable[ConversationRecord]) -> dict[str, str]:
        """Pre-scan: map every call id that appears next to a tool name."""
        call_ids: dict[str, str] = {}
        for record in records:
            for message in _scanned(record.messages):
                for item in message.content:
                    if isinstance(item, ToolUseContent | ToolCallContent) and item.call_id:
                        raw = item.tool_name if isinstance(item, ToolUseContent) else item.name
                        name = normalize_tool_name(raw)
                        if name:
                            call_ids[item.call_id] = name
                        continue
                    text = _item_text(item)
                    if not text:
                        continue
                    for pattern, name_group, id_group in _NAME_ID_PAIRS:
                        for match in pattern.finditer(text):
                            name = normalize_tool_name(match.group(name_group))
                            call_id = match.group(id_group).rstrip(".:-")
                            if name and not looks_like_call_id(name):
                                call_ids.setdefault(call_id, name)
        logger.debug("Pre-scan resolved %d call ids", len(call_ids))
        return call_ids

    def _match_text(self, text: str, matchers: Sequence[ToolNameMatcher]) -> str | None:
        for matcher in matchers:
            raw = matcher.try_extract(text)
            if raw is None:
                continue
            # An id where a name should be: leave it for the call-id matcher
            if looks_like_call_id(raw):
                continue
            name = normalize_tool_name(raw)
            if name:
                return name
        return None

    def _match_item(
        self,
        item: ContentItem,
        matchers: Sequence[ToolNameMatcher],
    ) -> tuple[str, str | None] | None:
        if isinstance(item, ToolUseContent):
            name = normalize_tool_name(item.tool_name)
            return (name, item.call_id) if name else None
        if isinstance(item, ToolCallContent):
            name = normalize_tool_name(item.name)
            return (name, item.call_id) if name else None

        text = _item_text(item)
        if not text:
            return None
        name = self._match_text(text, matchers)
        return (name, find_call_id(text)) if name else None

    def _latency(self, messages: Sequence[Message], index: int) -> float | None:
        """Seconds until the next assistant message, or None if missing or implausible."""
        occurred_at = messages[index].created_at
        if occurred_at is None:
            return None
        for later in messages[index + 1 :]:
            if later.role != "assistant":
                continue
            if later.created_at is None:
                return None
            latency = (later.created_at - occurred_at).total_seconds()
            if 0 < latency <= self._max_latency_seconds:
                return latency
            return None
        return None

    def extract(self, records: Sequence[ConversationRecord]) -> list[ToolCallObservation]:
        """Detect every tool invocation in ``records``.

        A tool is counted at most once per message, however many content
        items mention it.
        """
        call_ids = self.build_call_id_map(records)
        matchers = (*self._matchers, CallIdMatcher(call_ids))

        observations: list[ToolCallObservation] = []
        for record in records:
            messages = record.messages
            for index, message in enumerate(messages):
                if message.role not in _SCANNED_ROLES:
                    continue
                seen: set[str] = set()
                for item in message.content:
                    found = self._match_item(item, matchers)
                    if found is None:
                        continue
                    name, call_id = found
                    if name in seen:
                        continue
                    seen.add(name)
                    observations.append(
                        ToolCallObservation(
                            tool_name=name,
                            call_id=call_id,
                            occurred_at=message.created_at,
                            record_id=record.id,
                            response_latency_seconds=self._latency(messages, index),
                        )
                    )
        logger.info("Extracted %d tool call observations from %d records", len(observations), len(records))
        return observations
