"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Provider-facing tool export utilities.

This module converts the aggregated MCP tool catalog into function
declarations used by OpenAI-compatible transports (LiteLLM, Gemini through
LiteLLM, etc.).
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ..mcp.naming import to_namespaced
from ..mcp.types import ServerTools, ToolDescriptor, ToolNameError
from .types import ToolDefinition

logger = logging.getLogger("mcpchat.llms.tool_export")

# Keys some providers reject inside function parameter schemas.
_UNSUPPORTED_SCHEMA_KEYS = ("$schema", "$id")


def empty_object_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


def normalize_json_schema(schema: dict[str, Any] | None) -> dict[str, Any]:
    """
    Ensure schema is a safe object-parameter schema.

    A missing schema becomes an empty object schema. Malformed fields are
    coerced to predictable defaults so providers always receive a
    well-formed function-parameters schema.
    """
    if not isinstance(schema, dict):
        return empty_object_schema()

    out = {
        key: value for key, value in schema.items() if key not in _UNSUPPORTED_SCHEMA_KEYS
    }

    # Tool parameters should always be object-shaped.
    out["type"] = "object"

    properties_raw = out.get("properties")
    if not isinstance(properties_raw, dict):
        properties: dict[str, Any] = {}
    else:
        properties = {
            str(key): (value if isinstance(value, dict) else {})
            for key, value in properties_raw.items()
        }
    out["properties"] = properties

    required_raw = out.get("required")
    if isinstance(required_raw, list):
        required = [
            name for name in required_raw if isinstance(name, str) and name in properties
        ]
        if required:
            out["required"] = required
        else:
            out.pop("required", None)
    else:
        out.pop("required", None)

    if "additionalProperties" in out and not isinstance(
        out["additionalProperties"], (bool, dict)
    ):
        out.pop("additionalProperties")

    return out


def tool_to_declaration(server_id: str, tool: ToolDescriptor) -> ToolDefinition:
    """Convert one server tool into a function declaration."""
    return {
        "type": "function",
        "function": {
            "name": to_namespaced(server_id, tool.name),
            "description": tool.description or "",
            "parameters": normalize_json_schema(tool.input_schema),
        },
    }


def build_tool_declarations(catalog: Iterable[ServerTools]) -> list[ToolDefinition]:
    """
    Flatten a tool catalog into function declarations.

    One declaration is produced per tool per server, in catalog order. Tools
    whose names cannot be namespaced are skipped with a warning.
    """
    declarations: list[ToolDefinition] = []
    for entry in catalog:
        for tool in entry.tools:
            try:
                declarations.append(tool_to_declaration(entry.server_id, tool))
            except ToolNameError as error:
                logger.warning("Skipping tool %r on %s: %s", tool.name, entry.server_id, error)
    return declarations
