"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Transport construction for MCP server connections.
"""

from __future__ import annotations

import os
import urllib.parse
from contextlib import AbstractAsyncContextManager
from typing import Any

from mcp import StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from mcpchat.mcp.types import ServerConnectionConfig, TransportConfigError


def validate_http_url(url: str | None) -> str:
    if not url or not url.strip():
        raise TransportConfigError("URL is not configured")
    parsed = urllib.parse.urlparse(url.strip())
    if parsed.scheme not in {"http", "https"}:
        raise TransportConfigError("MCP server URL scheme must be http or https")
    if not parsed.netloc:
        raise TransportConfigError("MCP server URL must include network location")
    return url.strip()


def merged_environment(overrides: dict[str, str] | None) -> dict[str, str] | None:
    """Overlay config env vars on the current process environment."""
    if not overrides:
        return None
    return {**os.environ, **{str(k): str(v) for k, v in overrides.items()}}


def stdio_parameters(config: ServerConnectionConfig) -> StdioServerParameters:
    command = (config.command or "").strip()
    if not command:
        raise TransportConfigError("Command is not configured")
    return StdioServerParameters(
        command=command,
        args=list(config.args or []),
        env=merged_environment(config.env),
    )


def open_transport(
    config: ServerConnectionConfig,
) -> AbstractAsyncContextManager[tuple[Any, ...]]:
    """
    Return the SDK context manager yielding ``(read, write, ...)`` streams.

    Validation happens here, before any I/O, so configuration problems surface
    as ``TransportConfigError`` instead of transport failures.
    """
    if config.transport_type == "streamable-http":
        url = validate_http_url(config.url)
        return streamablehttp_client(url, headers=dict(config.headers or {}) or None)
    if config.transport_type == "stdio":
        return stdio_client(stdio_parameters(config))
    raise TransportConfigError(
        f"Unsupported transport type: {config.transport_type}"
    )
