"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Server-sent event framing for the chat stream.
"""

from __future__ import annotations

import json
from typing import Any

from ..llms.types import GatewayEvent, ToolCall
from ..mcp.naming import from_namespaced
from ..mcp.types import ToolNameError

DONE_FRAME = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def tool_call_payload(call: ToolCall) -> dict[str, Any]:
    try:
        parsed = from_namespaced(call.tool_name)
        server_id, tool_name = parsed.server_id, parsed.tool_name
    except ToolNameError:
        server_id, tool_name = "", call.tool_name
    return {
        "toolCallId": call.id,
        "name": call.tool_name,
        "serverId": server_id,
        "toolName": tool_name,
        "args": call.arguments,
    }


def event_frame(event: GatewayEvent) -> str:
    if event.type == "text":
        return sse_frame({"text": event.text})
    if event.type == "tool_calls":
        return sse_frame({"toolCalls": [tool_call_payload(call) for call in event.tool_calls]})
    return sse_frame({"error": event.error or ""})
