"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Conversion of conversation history into model request messages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from .types import FunctionResult, Message, MessagePart, ToolResultContentPart

if TYPE_CHECKING:
    from ..chat.types import ChatTurn, ToolCallInfo

NOT_EXECUTED_RESULT = "Tool call was not executed."


def _function_response(call: "ToolCallInfo") -> ToolResultContentPart:
    return {
        "type": "tool_result",
        "tool_use_id": call.tool_call_id,
        "name": call.namespaced_name,
        "content": call.result if call.result is not None else NOT_EXECUTED_RESULT,
        "is_error": call.status == "error",
    }


def _assistant_message(turn: "ChatTurn") -> Message:
    if not turn.tool_calls:
        return Message(role="assistant", content=turn.content or " ")
    parts: list[MessagePart] = []
    if turn.content:
        parts.append({"type": "text", "text": turn.content})
    for call in turn.tool_calls:
        parts.append(
            {
                "type": "tool_use",
                "id": call.tool_call_id,
                "name": call.namespaced_name,
                "input": call.args,
            }
        )
    return Message(role="assistant", content=parts)


def results_message(results: Sequence[FunctionResult]) -> Message:
    """Single user message carrying one function response per result."""
    parts: list[MessagePart] = [
        {
            "type": "tool_result",
            "tool_use_id": result.call_id,
            "name": result.name,
            "content": result.content,
            "is_error": result.is_error,
        }
        for result in results
    ]
    return Message(role="user", content=parts)


def build_contents(
    turns: Sequence["ChatTurn"],
    pending_tool_results: Sequence[FunctionResult] | None = None,
) -> list[Message]:
    """
    Build the ordered model messages for a turn.

    Assistant turns that proposed tool calls become a message with one
    ``tool_use`` part per call. When such a turn is followed by later history
    its recorded results are replayed right after it so every call stays
    paired with a response. Results for the most recent turn are supplied by
    the caller through ``pending_tool_results`` and appended last.
    """
    messages: list[Message] = []
    last_index = len(turns) - 1
    for index, turn in enumerate(turns):
        if turn.role == "user":
            messages.append(Message(role="user", content=turn.content))
            continue
        messages.append(_assistant_message(turn))
        if turn.tool_calls and index < last_index:
            messages.append(
                Message(
                    role="user",
                    content=[_function_response(call) for call in turn.tool_calls],
                )
            )
    if pending_tool_results:
        messages.append(results_message(pending_tool_results))
    return messages
