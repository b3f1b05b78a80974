"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Request bodies accepted by the HTTP API (camelCase on the wire).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..chat.types import ChatTurn, ToolCallInfo
from ..llms.types import FunctionResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DisconnectRequest(_CamelModel):
    server_id: str = ""


class CallToolRequest(_CamelModel):
    server_id: str = ""
    tool_name: str = ""
    args: dict[str, Any] = Field(default_factory=dict)


class ToolCallPayload(_CamelModel):
    tool_call_id: str
    tool_name: str
    server_id: str = ""
    server_name: str = ""
    args: dict[str, Any] = Field(default_factory=dict)
    status: Literal["pending", "approved", "denied", "completed", "error"] = "pending"
    result: str | None = None

    def to_info(self) -> ToolCallInfo:
        return ToolCallInfo(
            tool_call_id=self.tool_call_id,
            tool_name=self.tool_name,
            server_id=self.server_id,
            server_name=self.server_name,
            args=dict(self.args),
            status=self.status,
            result=self.result,
        )


class ChatMessagePayload(_CamelModel):
    role: Literal["user", "assistant"]
    content: str = ""
    tool_calls: list[ToolCallPayload] | None = None

    def to_turn(self) -> ChatTurn:
        return ChatTurn(
            role=self.role,
            content=self.content,
            tool_calls=[call.to_info() for call in self.tool_calls] if self.tool_calls else None,
        )


class ToolResultPayload(_CamelModel):
    """Result of a call the client executed, addressed by namespaced name."""

    tool_call_id: str
    name: str
    content: str = ""
    is_error: bool = False

    def to_result(self) -> FunctionResult:
        return FunctionResult(
            call_id=self.tool_call_id,
            name=self.name,
            content=self.content,
            is_error=self.is_error,
        )


class ChatRequest(_CamelModel):
    messages: list[ChatMessagePayload] = Field(default_factory=list)
    tool_results: list[ToolResultPayload] | None = None
