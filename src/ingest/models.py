"""Pydantic models for thread records, chunks, and fetch outcomes.

Remote thread objects and cached records are both validated into
``ConversationRecord``.  Content items are a tagged union on ``kind``; the
raw API uses a handful of aliases (``content`` vs ``text``, ``sentAt`` vs
``createdAt``, ``tool_use`` vs ``toolUse``) which are folded into the
canonical shape before validation.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, TypedDict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Raw API response types
# ---------------------------------------------------------------------------


class RawThread(TypedDict, total=False):
    id: str
    conversationId: str
    createdAt: str
    messages: list[dict[str, object]]


class RawThreadItem(TypedDict, total=False):
    thread: RawThread


class ThreadsResponse(TypedDict, total=False):
    threads: list[RawThreadItem]


# ---------------------------------------------------------------------------
# Content items
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str = ""


class UiContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ui"] = "ui"
    ui: dict[str, Any] = Field(default_factory=dict)


class LinkoutContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["linkout"] = "linkout"
    url: str = ""
    text: str = ""


class ToolUseContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["toolUse"] = "toolUse"
    tool_name: str
    call_id: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)


class ToolCallContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["toolCall"] = "toolCall"
    name: str
    call_id: str | None = None
    arguments: str = ""


ContentItem = Annotated[
    TextContent | UiContent | LinkoutContent | ToolUseContent | ToolCallContent,
    Field(discriminator="kind"),
]

_TOOL_USE_KINDS = {"toolUse", "tool_use"}
_TOOL_CALL_KINDS = {"toolCall", "tool_call", "function_call"}


def _nested_name(raw: dict[str, Any], key: str) -> str | None:
    nested = raw.get(key)
    if isinstance(nested, dict):
        name = nested.get("name")
        if isinstance(name, str) and name:
            return name
    return None


def _coerce_content_item(raw: object) -> object:
    """Fold the raw API's content variants into the canonical tagged shape."""
    if isinstance(raw, BaseModel):
        return raw
    if not isinstance(raw, dict):
        return {"kind": "text", "text": "" if raw is None else str(raw)}

    kind = raw.get("kind") or raw.get("type")
    text = raw.get("text") or raw.get("content") or ""
    if not isinstance(text, str):
        text = str(text)

    if kind in _TOOL_USE_KINDS or _nested_name(raw, "tool_use") or _nested_name(raw, "tool"):
        name = raw.get("tool_name") or raw.get("name") or _nested_name(raw, "tool_use") or _nested_name(raw, "tool")
        if name:
            tool_input = raw.get("input")
            return {
                "kind": "toolUse",
                "tool_name": name,
                "call_id": raw.get("call_id") or raw.get("callId") or raw.get("id"),
                "input": tool_input if isinstance(tool_input, dict) else {},
            }

    if kind in _TOOL_CALL_KINDS or _nested_name(raw, "tool_call") or _nested_name(raw, "function_call"):
        name = raw.get("name") or _nested_name(raw, "tool_call") or _nested_name(raw, "function_call")
        if name:
            arguments = raw.get("arguments", "")
            return {
                "kind": "toolCall",
                "name": name,
                "call_id": raw.get("call_id") or raw.get("callId") or raw.get("id"),
                "arguments": arguments if isinstance(arguments, str) else str(arguments),
            }

    if kind == "ui":
        ui = raw.get("ui")
        return {"kind": "ui", "ui": ui if isinstance(ui, dict) else {}}
    if kind == "linkout":
        return {"kind": "linkout", "url": raw.get("url") or "", "text": text}

    # Plain text, missing kind, and kinds we don't model all become text
    return {"kind": "text", "text": text}


def _message_tool_call_item(raw: object) -> dict[str, Any] | None:
    """Turn one OpenAI-style ``tool_calls`` entry into a ``toolCall`` content item."""
    if not isinstance(raw, dict):
        return None
    function = raw.get("function")
    name = function.get("name") if isinstance(function, dict) else None
    if not isinstance(name, str) or not name:
        return None
    return {
        "kind": "toolCall",
        "name": name,
        "call_id": raw.get("id"),
        "arguments": function.get("arguments") or "",
    }


# ---------------------------------------------------------------------------
# Messages and records
# ---------------------------------------------------------------------------

Role = Literal["user", "assistant", "system", "status"]
_ROLES = {"user", "assistant", "system", "status"}


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    role: Role
    created_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("created_at", "createdAt", "sentAt"),
    )
    content: list[ContentItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _fold_tool_calls(cls, data: object) -> object:
        # Message-level tool_calls become toolCall items after the content
        if not isinstance(data, dict) or not isinstance(data.get("tool_calls"), list):
            return data
        calls = [item for item in map(_message_tool_call_item, data["tool_calls"]) if item is not None]
        if not calls:
            return data
        content = data.get("content")
        if content is None:
            items: list[object] = []
        elif isinstance(content, str):
            items = [{"kind": "text", "text": content}]
        elif isinstance(content, list):
            items = list(content)
        else:
            return data
        return {**data, "content": [*items, *calls]}

    @field_validator("role", mode="before")
    @classmethod
    def _unknown_role_as_system(cls, value: object) -> object:
        # Roles outside the known set (e.g. "tool") are internal traffic
        if isinstance(value, str) and value not in _ROLES:
            return "system"
        return value

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, value: datetime | None) -> datetime | None:
        return None if value is None else ensure_aware(value)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [{"kind": "text", "text": value}]
        if isinstance(value, list):
            return [_coerce_content_item(item) for item in value]
        return value

    def texts(self) -> list[str]:
        """Text bodies of this message's text and linkout items."""
        out: list[str] = []
        for item in self.content:
            if isinstance(item, TextContent | LinkoutContent) and item.text:
                out.append(item.text)
        return out


class ConversationRecord(BaseModel):
    """Canonical thread record: the unit that is fetched, cached and analysed."""

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("conversation_id", "conversationId"),
    )
    created_at: datetime = Field(validation_alias=AliasChoices("created_at", "createdAt"))
    messages: list[Message] = Field(default_factory=list)

    @field_validator("messages", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return [] if value is None else value

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, value: datetime) -> datetime:
        return ensure_aware(value)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with API timestamps."""
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


# ---------------------------------------------------------------------------
# Chunks and fetch outcomes
# ---------------------------------------------------------------------------


class TimeChunk(BaseModel):
    """A half-open ``[start, end)`` window fetched with a single request."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    label: str

    @model_validator(mode="after")
    def _start_before_end(self) -> "TimeChunk":
        if self.start >= self.end:
            msg = f"Chunk start {self.start.isoformat()} must be before end {self.end.isoformat()}"
            raise ValueError(msg)
        return self


class FetchStatusKind(StrEnum):
    SUCCESS = "success"
    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    PARSE_ERROR = "parse_error"


class FetchStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: FetchStatusKind
    status_code: int | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is FetchStatusKind.SUCCESS

    def display(self) -> str:
        """Short status string: the HTTP code, ``Timeout``, or ``Error``."""
        if self.kind is FetchStatusKind.SUCCESS:
            return str(self.status_code or 200)
        if self.kind is FetchStatusKind.HTTP_ERROR:
            return str(self.status_code)
        if self.kind is FetchStatusKind.TIMEOUT:
            return "Timeout"
        return "Error"


class ChunkOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_index: int
    status: FetchStatus
    records: list[ConversationRecord] = Field(default_factory=list)


class ChunkStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_index: int
    status: str  # "200", "503", "Timeout", "Error"
    label: str
    message: str | None = None


class FetchProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: int
    total: int
    current_label: str


class IngestionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    records: list[ConversationRecord] = Field(default_factory=list)
    chunk_statuses: list[ChunkStatus] = Field(default_factory=list)
    from_cache: bool = False

    @property
    def failed_chunks(self) -> list[ChunkStatus]:
        return [s for s in self.chunk_statuses if not s.status.isdigit() or not s.status.startswith("2")]

    @property
    def is_empty(self) -> bool:
        """True when the run finished without records, whether failed or genuinely empty."""
        return not self.records

    @property
    def all_failed(self) -> bool:
        return bool(self.chunk_statuses) and len(self.failed_chunks) == len(self.chunk_statuses)
