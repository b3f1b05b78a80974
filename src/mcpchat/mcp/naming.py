"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Reversible mapping between ``(server_id, tool_name)`` pairs and the flat
function names exposed to the model.

Names look like ``mcp_<server_id>__<tool_name>``. Model APIs accept function
names of at most 64 characters from ``[A-Za-z0-9_-]`` starting with a letter
or ``_``; the fixed prefix covers the first character even when server ids
start with a digit. Server ids may not contain ``__`` or end with ``_``, so
splitting at the first ``__`` after the prefix is unambiguous even when tool
names contain it. Pairs that cannot satisfy those rules are rejected rather
than mangled, so every produced name maps back to exactly one pair.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from mcpchat.mcp.types import ToolNameError, validate_server_id

PREFIX = "mcp_"
SEPARATOR = "__"
MAX_NAME_LENGTH = 64

_TOOL_NAME_CHARS = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True, slots=True)
class NamespacedTool:
    server_id: str
    tool_name: str


def to_namespaced(server_id: str, tool_name: str) -> str:
    validate_server_id(server_id)
    if not tool_name:
        raise ToolNameError("tool name cannot be empty")
    if not _TOOL_NAME_CHARS.fullmatch(tool_name):
        raise ToolNameError(
            f"tool name '{tool_name}' may only contain letters, digits, '-' and '_'"
        )
    name = f"{PREFIX}{server_id}{SEPARATOR}{tool_name}"
    if len(name) > MAX_NAME_LENGTH:
        raise ToolNameError(
            f"'{name}' is {len(name)} characters; function names allow {MAX_NAME_LENGTH}"
        )
    return name


def from_namespaced(name: str) -> NamespacedTool:
    if not name.startswith(PREFIX):
        raise ToolNameError(f"'{name}' is not a namespaced MCP tool name")
    server_id, sep, tool_name = name[len(PREFIX):].partition(SEPARATOR)
    if not sep or not server_id or not tool_name:
        raise ToolNameError(f"'{name}' is not a namespaced MCP tool name")
    return NamespacedTool(server_id=server_id, tool_name=tool_name)
