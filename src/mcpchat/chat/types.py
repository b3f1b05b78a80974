"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Conversation entities shared by the loop, the stores and the HTTP layer.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from ..mcp.naming import to_namespaced
from ..mcp.types import InlineImage, ToolCallResult, ToolNameError

ToolCallStatus = Literal["pending", "approved", "denied", "completed", "error"]
TurnRole = Literal["user", "assistant"]

DENIED_RESULT = "User denied this tool call."
DEFAULT_TITLE = "New chat"
TITLE_MAX_CHARS = 30

_TERMINAL: frozenset[str] = frozenset({"denied", "completed", "error"})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


class ChatError(RuntimeError):
    """Base error for conversation state handling."""


class InvalidToolCallTransition(ChatError):
    """Raised when a tool call is moved to a status its current one forbids."""

    def __init__(self, tool_call_id: str, current: str, target: str) -> None:
        super().__init__(f"Tool call {tool_call_id} cannot go from {current} to {target}")
        self.tool_call_id = tool_call_id
        self.current = current
        self.target = target


@dataclass(slots=True)
class ToolCallInfo:
    """
    One model-proposed tool call awaiting, or past, user review.

    Status moves ``pending -> approved -> completed|error`` or
    ``pending -> denied``. Terminal statuses never change again.
    """

    tool_call_id: str
    tool_name: str
    server_id: str
    server_name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = "pending"
    result: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status != "pending"

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    @property
    def namespaced_name(self) -> str:
        """Function name the model used for this call."""
        try:
            return to_namespaced(self.server_id, self.tool_name)
        except ToolNameError:
            return self.tool_name

    def _move(self, target: ToolCallStatus, *, allowed_from: tuple[str, ...]) -> None:
        if self.status not in allowed_from:
            raise InvalidToolCallTransition(self.tool_call_id, self.status, target)
        self.status = target

    def approve(self) -> None:
        self._move("approved", allowed_from=("pending",))

    def deny(self) -> None:
        self._move("denied", allowed_from=("pending",))
        self.result = DENIED_RESULT

    def complete(self, outcome: ToolCallResult) -> None:
        self._move("error" if outcome.is_error else "completed", allowed_from=("approved",))
        self.result = outcome.content

    def fail(self, message: str) -> None:
        self._move("error", allowed_from=("approved",))
        self.result = message

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "serverId": self.server_id,
            "serverName": self.server_name,
            "args": self.args,
            "status": self.status,
        }
        if self.result is not None:
            out["result"] = self.result
        return out

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ToolCallInfo":
        return ToolCallInfo(
            tool_call_id=str(payload.get("toolCallId") or new_id()),
            tool_name=str(payload.get("toolName", "")),
            server_id=str(payload.get("serverId", "")),
            server_name=str(payload.get("serverName", "")),
            args=dict(payload.get("args") or {}),
            status=payload.get("status", "pending"),
            result=payload.get("result"),
        )


@dataclass(slots=True)
class ChatTurn:
    """A single user or assistant message of a conversation."""

    role: TurnRole
    content: str = ""
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=_now_iso)
    tool_calls: list[ToolCallInfo] | None = None
    images: list[InlineImage] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }
        if self.tool_calls:
            out["toolCalls"] = [call.to_dict() for call in self.tool_calls]
        if self.images:
            out["images"] = [image.to_dict() for image in self.images]
        return out

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "ChatTurn":
        calls = payload.get("toolCalls")
        images = payload.get("images")
        return ChatTurn(
            role=payload["role"],
            content=str(payload.get("content") or ""),
            id=str(payload.get("id") or new_id()),
            created_at=str(payload.get("createdAt") or _now_iso()),
            tool_calls=[ToolCallInfo.from_dict(call) for call in calls] if calls else None,
            images=[
                InlineImage(mime_type=image["mimeType"], data=image["data"]) for image in images
            ]
            if images
            else None,
        )


@dataclass(slots=True)
class Conversation:
    id: str = field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    turns: list[ChatTurn] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "turns": [turn.to_dict() for turn in self.turns],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def generate_title(text: str) -> str:
    """Title derived from the first user message."""
    cleaned = text.strip()
    if not cleaned:
        return DEFAULT_TITLE
    if len(cleaned) > TITLE_MAX_CHARS:
        return cleaned[:TITLE_MAX_CHARS] + "..."
    return cleaned
