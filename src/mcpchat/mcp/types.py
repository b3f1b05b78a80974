"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Type models and error hierarchy for MCP server connections.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TransportType = Literal["streamable-http", "stdio"]
ConnectionStatus = Literal["disconnected", "connecting", "connected", "error"]

# Server ids are embedded in model function names, which allow at most 64
# characters from [A-Za-z0-9_-]. Keeping ids short leaves room for tool names.
SERVER_ID_MAX_LENGTH = 24
_SERVER_ID_CHARS = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ServerConnectionConfig(BaseModel):
    """
    Identity and transport description for one MCP server.

    Attributes:
        id: Short stable identifier made of letters, digits, ``-`` and single
            ``_`` (see ``validate_server_id``).
        name: User-facing server name.
        enabled: Whether the server should be connected on startup.
        transport_type: ``streamable-http`` or ``stdio``.
        url: Endpoint URL for network transport.
        headers: Extra HTTP headers for network transport.
        command: Executable for subprocess transport.
        args: Command arguments for subprocess transport.
        env: Environment overrides for subprocess transport.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str = ""
    enabled: bool = True
    transport_type: TransportType
    url: str | None = None
    headers: dict[str, str] | None = None
    command: str | None = None
    args: list[str] | None = None
    env: dict[str, str] | None = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @field_validator("id")
    @classmethod
    def check_id(cls, value: str) -> str:
        return validate_server_id(value)


def create_server_config(
    *,
    name: str,
    transport_type: TransportType,
    **fields: Any,
) -> ServerConnectionConfig:
    """Build a new enabled config with a generated id and fresh timestamps."""
    now = _now_iso()
    return ServerConnectionConfig(
        id=uuid.uuid4().hex[:8],
        name=name,
        transport_type=transport_type,
        created_at=now,
        updated_at=now,
        **fields,
    )


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Connection status snapshot for one server id."""

    server_id: str
    status: ConnectionStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"serverId": self.server_id, "status": self.status}
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """Tool metadata as advertised by a connected server."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            out["description"] = self.description
        if self.input_schema is not None:
            out["inputSchema"] = self.input_schema
        return out


@dataclass(frozen=True, slots=True)
class ServerTools:
    """Tool catalog of one connected server."""

    server_id: str
    tools: list[ToolDescriptor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "tools": [tool.to_dict() for tool in self.tools],
        }


@dataclass(frozen=True, slots=True)
class InlineImage:
    """Base64 image payload returned by a tool."""

    mime_type: str
    data: str

    def to_dict(self) -> dict[str, str]:
        return {"mimeType": self.mime_type, "data": self.data}


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    """Flattened result of one ``tools/call`` request."""

    content: str
    is_error: bool = False
    images: list[InlineImage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"content": self.content, "isError": self.is_error}
        if self.images:
            out["images"] = [image.to_dict() for image in self.images]
        return out


class MCPRegistryError(RuntimeError):
    """Base MCP connection registry error."""


class TransportConfigError(MCPRegistryError):
    """Raised when a server config cannot produce a transport."""


class ToolNameError(MCPRegistryError, ValueError):
    """Raised when a namespaced tool id cannot be built or parsed."""


def validate_server_id(server_id: str) -> str:
    """
    Return ``server_id`` if it can be embedded in a namespaced tool name.

    Ids start with a letter or digit, use only ``[A-Za-z0-9_-]``, never
    contain ``__`` or end with ``_`` (either would move the split point of
    the namespaced name) and are at most ``SERVER_ID_MAX_LENGTH`` long.
    """
    if not server_id:
        raise ToolNameError("server id cannot be empty")
    if len(server_id) > SERVER_ID_MAX_LENGTH:
        raise ToolNameError(
            f"server id '{server_id}' is longer than {SERVER_ID_MAX_LENGTH} characters"
        )
    if not _SERVER_ID_CHARS.fullmatch(server_id):
        raise ToolNameError(
            f"server id '{server_id}' may only contain letters, digits, '-' and '_'"
        )
    if "__" in server_id or server_id.endswith("_"):
        raise ToolNameError(f"server id '{server_id}' must not contain '__' or end with '_'")
    return server_id
