"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

This module defines the provider-agnostic types exchanged with the model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, NotRequired, TypeAlias, TypedDict

JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
JSONSchema: TypeAlias = dict[str, JSONValue]

Role = Literal["user", "assistant"]


class TextContentPart(TypedDict):
    """Message content part payload for text content."""
    type: Literal["text"]
    text: str


class ToolUseContentPart(TypedDict):
    """Message content part payload for a model-issued function call."""
    type: Literal["tool_use"]
    id: str
    name: str
    input: JSONObject


class ToolResultContentPart(TypedDict):
    """Message content part payload for a function response."""
    type: Literal["tool_result"]
    tool_use_id: str
    name: str
    content: str
    is_error: NotRequired[bool]


MessagePart: TypeAlias = TextContentPart | ToolUseContentPart | ToolResultContentPart
MessageContent: TypeAlias = str | list[MessagePart]


class ToolFunctionSpec(TypedDict):
    """Schema/spec payload for tool function definitions."""
    name: str
    description: str
    parameters: JSONSchema


class ToolDefinition(TypedDict):
    """Function declaration offered to the model."""
    type: Literal["function"]
    function: ToolFunctionSpec


@dataclass(frozen=True, slots=True)
class Message:
    """Normalized chat message payload."""
    role: Role
    content: MessageContent


@dataclass(frozen=True, slots=True)
class FunctionResult:
    """Outcome of one executed (or denied) call, fed back to the model."""
    call_id: str
    name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class ToolCall:
    """
    Data-only representation of a model-returned tool call.
    The conversation loop decides if/when/how to execute this.
    """

    id: str | None = None
    tool_name: str = ""
    arguments: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ModelRequest:
    """One streaming generation request."""
    model: str
    messages: list[Message] = field(default_factory=list)
    tools: list[ToolDefinition] | None = None
    temperature: float | None = None


@dataclass(frozen=True, slots=True)
class StreamTextDeltaEvent:
    """Stream event carrying incremental text output."""
    type: Literal["text_delta"] = "text_delta"
    delta: str = ""


@dataclass(frozen=True, slots=True)
class StreamToolCallDeltaEvent:
    """Stream event carrying incremental tool-call output."""
    type: Literal["tool_call_delta"] = "tool_call_delta"
    index: int = 0
    call_id: str | None = None
    tool_name: str | None = None
    arguments_delta: str = ""


@dataclass(frozen=True, slots=True)
class StreamMessageStopEvent:
    """Stream event indicating assistant message stop."""
    type: Literal["message_stop"] = "message_stop"
    finish_reason: str | None = None


TransportStreamEvent: TypeAlias = (
    StreamTextDeltaEvent | StreamToolCallDeltaEvent | StreamMessageStopEvent
)

GatewayEventType = Literal["text", "tool_calls", "error"]


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    """
    One item of a streamed model turn.

    Attributes:
        type: ``text`` for an in-order text delta, ``tool_calls`` for the
            complete set of requested calls (emitted once, after the stream
            ends), ``error`` for a failure after output had started.
        text: Text delta for ``text`` events.
        tool_calls: Requested calls for ``tool_calls`` events.
        error: Error message for ``error`` events.
    """

    type: GatewayEventType
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: str | None = None
