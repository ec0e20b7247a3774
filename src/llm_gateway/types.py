"""Provider-agnostic request/response models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["system", "user", "assistant", "tool"]
UsageControl = Literal["auto", "force", "none"]
SegmentType = Literal["model", "tool"]


class _WireModel(BaseModel):
    """Models that serialize with camelCase keys (``model_dump(by_alias=True)``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolCallFunction(BaseModel):
    name: str
    # raw JSON text exactly as produced by the model
    arguments: str = "{}"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction


class Message(BaseModel):
    """Single chat message."""

    role: Role
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


class ToolDef(BaseModel):
    """JSON-schema tool definition plus the usage policy attached to it."""

    id: str
    description: str | None = None
    json_schema: dict[str, Any] = Field(default_factory=dict)
    # preset parameters; the model's arguments are layered on top
    params: dict[str, Any] = Field(default_factory=dict)
    usage_control: UsageControl = "auto"


class ProviderRequest(BaseModel):
    """Normalized request shared by all provider adapters."""

    model_config = ConfigDict(frozen=True)

    model: str
    messages: list[Message] = Field(default_factory=list)
    system_prompt: str = ""
    context: str | None = None
    tools: list[ToolDef] = Field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False


class TokenUsage(_WireModel):
    input: int = 0
    output: int = 0
    total: int = 0

    def plus(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input=self.input + other.input,
            output=self.output + other.output,
            total=self.total + other.total,
        )


class CostBreakdown(_WireModel):
    input: float = 0.0
    output: float = 0.0
    total: float = 0.0


class TimeSegment(_WireModel):
    """Interval of model or tool work, in epoch milliseconds."""

    type: SegmentType
    name: str
    start_time: int
    end_time: int
    duration: int


class ProviderTiming(_WireModel):
    start_time: str
    end_time: str
    duration: int
    model_time: int = 0
    tools_time: int = 0
    first_response_time: int = 0
    iterations: int = 1
    time_segments: list[TimeSegment] = Field(default_factory=list)


class ToolCallRecord(_WireModel):
    """Outcome of one executed tool invocation."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    success: bool
    start_time: str
    end_time: str
    duration: int


class ProviderResponse(_WireModel):
    """Consolidated result of a non-streaming request."""

    content: str
    model: str
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown = Field(default_factory=CostBreakdown)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    tool_results: list[Any] = Field(default_factory=list)
    timing: ProviderTiming


class StreamingOutput(_WireModel):
    """Snapshot of a streaming request's progress."""

    content: str = ""
    model: str
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostBreakdown = Field(default_factory=CostBreakdown)
    timing: ProviderTiming
    is_streaming: bool = True
