"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

MCP connection layer for mcpchat.

Owns live connections to external MCP servers (streamable HTTP or stdio),
aggregates their tool catalogs and maps tool names into the flat namespace
exposed to the model.

Quick start::

    from mcpchat.mcp import create_server_config, get_connection_registry

    registry = get_connection_registry()
    config = create_server_config(
        name="files",
        transport_type="stdio",
        command="npx",
        args=["-y", "@modelcontextprotocol/server-filesystem", "."],
    )
    state = await registry.connect(config)
    tools = await registry.list_tools(config.id)
"""

from .config import (
    InMemoryServerConfigStore,
    ServerConfigStore,
    load_server_configs,
    parse_server_configs,
)
from .naming import MAX_NAME_LENGTH, NamespacedTool, from_namespaced, to_namespaced
from .registry import (
    ConnectionRegistry,
    MCPSession,
    SessionFactory,
    get_connection_registry,
    open_client_session,
    reset_connection_registry,
)
from .types import (
    ConnectionState,
    ConnectionStatus,
    InlineImage,
    MCPRegistryError,
    ServerConnectionConfig,
    ServerTools,
    ToolCallResult,
    ToolDescriptor,
    ToolNameError,
    TransportConfigError,
    TransportType,
    create_server_config,
    validate_server_id,
)

__all__ = [
    "MAX_NAME_LENGTH",
    "ConnectionRegistry",
    "ConnectionState",
    "ConnectionStatus",
    "InMemoryServerConfigStore",
    "InlineImage",
    "MCPRegistryError",
    "MCPSession",
    "NamespacedTool",
    "ServerConfigStore",
    "ServerConnectionConfig",
    "ServerTools",
    "SessionFactory",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolNameError",
    "TransportConfigError",
    "TransportType",
    "create_server_config",
    "from_namespaced",
    "get_connection_registry",
    "load_server_configs",
    "open_client_session",
    "parse_server_configs",
    "reset_connection_registry",
    "to_namespaced",
    "validate_server_id",
]
