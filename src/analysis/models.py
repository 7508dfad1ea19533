"""Pydantic models for tool observations and derived statistics."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class ToolCallObservation(BaseModel):
    """One detected tool invocation inside a thread."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    call_id: str | None = None
    occurred_at: datetime | None = None
    record_id: str | None = None
    response_latency_seconds: float | None = None


class ConfidenceInterval(BaseModel):
    model_config = ConfigDict(frozen=True)

    lower: float
    upper: float
    margin: float


class Quartiles(BaseModel):
    model_config = ConfigDict(frozen=True)

    q1: float
    median: float
    q3: float
    iqr: float


class Significance(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str  # no-data | insufficient | very-low | low | moderate | high | very-high
    confidence_percent: float


class ToolStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_name: str
    count: int
    mean: float
    std_dev: float
    coefficient_of_variation: float
    confidence_interval: ConfidenceInterval | None = None
    outliers: list[float] = Field(default_factory=list)
    quartiles: Quartiles | None = None
    significance: Significance


class ToolUsage(BaseModel):
    """Invocation count and latency statistics for one tool."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    count: int
    latencies: list[float] = Field(default_factory=list)
    statistics: ToolStatistics


class ConversationMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_id: str
    user_messages: int
    assistant_messages: int
    total_messages: int
    duration_seconds: float
    time_to_first_response_seconds: float


class DailyCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: date
    conversations: int


class ConversationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_threads: int
    total_conversations: int
    total_user_messages: int
    total_assistant_messages: int
    avg_messages_per_conversation: float
    avg_duration_minutes: float
    avg_time_to_first_response_seconds: float
    conversations_with_errors: int
    error_percentage: float
    avg_conversations_per_day: float
    active_days: int
    peak_day: DailyCount | None = None


class ToolRate(BaseModel):
    """Share of conversations that used at least one tool of a category."""

    model_config = ConfigDict(frozen=True)

    matching_tools: list[str] = Field(default_factory=list)
    conversations: int
    total_conversations: int
    percentage: float


class WorkflowUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow: str
    count: int
    percentage: float
