"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Decoding helpers for MCP SDK payloads (tool listings and tool results).
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from mcp import types as mcp_types

from mcpchat.mcp.types import InlineImage, ToolCallResult, ToolDescriptor

IMAGE_ONLY_NOTICE = "Image generated."

# Leading base64 characters of common image signatures.
_BASE64_SIGNATURES: tuple[tuple[str, str], ...] = (
    ("/9j/", "image/jpeg"),
    ("iVBORw0KGgo", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
)


def sniff_image_mime_type(data: str) -> str:
    """Guess an image mime type from the start of a base64 payload."""
    for prefix, mime_type in _BASE64_SIGNATURES:
        if data.startswith(prefix):
            return mime_type
    return "image/png"


def tool_descriptor_from_sdk(tool: mcp_types.Tool) -> ToolDescriptor:
    schema = tool.inputSchema if isinstance(tool.inputSchema, dict) else None
    return ToolDescriptor(
        name=tool.name,
        description=tool.description,
        input_schema=schema,
    )


def decode_tool_result(result: mcp_types.CallToolResult) -> ToolCallResult:
    """
    Flatten a ``tools/call`` result into text plus inline images.

    Text blocks are joined with newlines. Image blocks keep their base64
    payload; a missing mime type is sniffed from the data. Other block kinds
    only contribute to the raw JSON fallback used when nothing else came back.
    """
    texts: list[str] = []
    images: list[InlineImage] = []
    for block in result.content:
        if isinstance(block, mcp_types.TextContent):
            if block.text:
                texts.append(block.text)
        elif isinstance(block, mcp_types.ImageContent):
            if block.data:
                images.append(
                    InlineImage(
                        mime_type=block.mimeType or sniff_image_mime_type(block.data),
                        data=block.data,
                    )
                )

    if texts:
        content = "\n".join(texts)
    elif images:
        content = IMAGE_ONLY_NOTICE
    else:
        content = _dump_blocks(result.content)

    return ToolCallResult(
        content=content,
        is_error=result.isError is True,
        images=images,
    )


def _dump_blocks(blocks: Iterable[Any]) -> str:
    rows = [
        block.model_dump(mode="json", exclude_none=True)
        if hasattr(block, "model_dump")
        else block
        for block in blocks
    ]
    return json.dumps(rows, ensure_ascii=False, default=str)
