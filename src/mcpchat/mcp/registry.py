"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Process-wide registry of live MCP server connections.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from mcp import ClientSession
from mcp import types as mcp_types

from mcpchat.mcp.content import decode_tool_result, tool_descriptor_from_sdk
from mcpchat.mcp.transport import open_transport
from mcpchat.mcp.types import (
    ConnectionState,
    ServerConnectionConfig,
    ServerTools,
    ToolCallResult,
    ToolDescriptor,
)

__all__ = [
    "ConnectionRegistry",
    "MCPSession",
    "SessionFactory",
    "get_connection_registry",
    "open_client_session",
    "reset_connection_registry",
]

logger = logging.getLogger("mcpchat.mcp.registry")

CLIENT_INFO = mcp_types.Implementation(name="mcpchat", version="0.1.0")
NOT_CONNECTED_MESSAGE = "Server is not connected."


class MCPSession(Protocol):
    """Subset of ``mcp.ClientSession`` used by the registry."""

    async def list_tools(self) -> mcp_types.ListToolsResult: ...

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> mcp_types.CallToolResult: ...


SessionFactory = Callable[
    [ServerConnectionConfig], AbstractAsyncContextManager[MCPSession]
]


@asynccontextmanager
async def open_client_session(
    config: ServerConnectionConfig,
) -> AsyncIterator[ClientSession]:
    """Open the configured transport and complete the MCP handshake."""
    async with open_transport(config) as streams:
        read, write = streams[0], streams[1]
        async with ClientSession(read, write, client_info=CLIENT_INFO) as session:
            await session.initialize()
            yield session


def _error_message(error: BaseException) -> str:
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "Connection timed out"
    return str(error) or type(error).__name__


class _LiveConnection:
    """
    One MCP session owned by a dedicated background task.

    The SDK transports are built on task groups that must be exited by the
    task that entered them, so the session lives inside ``_run`` until
    ``close`` is requested. If the session ends before that (the server
    process exited, the stream broke) ``lost_reason`` is set and ``on_lost``
    is called.
    """

    def __init__(
        self,
        config: ServerConnectionConfig,
        factory: SessionFactory,
        *,
        on_lost: Callable[[_LiveConnection], None] | None = None,
    ) -> None:
        self.server_id = config.id
        self.session: MCPSession | None = None
        self.lost_reason: str | None = None
        self._on_lost = on_lost
        self._config = config
        self._factory = factory
        self._ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def open(self, *, timeout_s: float | None) -> None:
        self._task = asyncio.create_task(
            self._run(), name=f"mcp-connection:{self.server_id}"
        )
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout_s)
        except BaseException:
            await self.close()
            raise

    async def _run(self) -> None:
        try:
            async with self._factory(self._config) as session:
                self.session = session
                if not self._ready.done():
                    self._ready.set_result(None)
                await self._closing.wait()
        except Exception as error:
            if not self._ready.done():
                self._ready.set_exception(error)
            elif not self._closing.is_set():
                self._lost(_error_message(error))
            else:
                raise
        else:
            if not self._closing.is_set():
                self._lost("Connection closed by server")
        finally:
            self.session = None
            if not self._ready.done():
                self._ready.set_exception(
                    ConnectionError("Connection closed before handshake completed")
                )

    def _lost(self, reason: str) -> None:
        self.session = None
        self.lost_reason = reason
        if self._on_lost is not None:
            self._on_lost(self)

    async def close(self, *, timeout_s: float = 5.0) -> None:
        self._closing.set()
        if self._task is None:
            return
        if not self._ready.done():
            # Still inside the handshake; nothing is waiting on ``_closing``.
            self._task.cancel()
        try:
            await asyncio.wait_for(self._task, timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing MCP server %s", self.server_id)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        except Exception as error:
            logger.warning(
                "Error closing MCP server %s: %s", self.server_id, _error_message(error)
            )
        if self._ready.done() and not self._ready.cancelled():
            self._ready.exception()


@dataclass(slots=True)
class _Entry:
    state: ConnectionState
    connection: _LiveConnection | None = None


class ConnectionRegistry:
    """
    Owns every live MCP connection of the process, keyed by server id.

    Failures never escape the public methods: connection problems become an
    ``error`` state and tool problems become empty listings or error results.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        connect_timeout_s: float | None = 30.0,
    ) -> None:
        self._session_factory = session_factory or open_client_session
        self._connect_timeout_s = connect_timeout_s
        self._entries: dict[str, _Entry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, server_id: str) -> asyncio.Lock:
        lock = self._locks.get(server_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[server_id] = lock
        return lock

    async def connect(self, config: ServerConnectionConfig) -> ConnectionState:
        """Connect (or reconnect) one server and return the resulting state."""
        async with self._lock_for(config.id):
            await self._teardown(config.id)
            self._entries[config.id] = _Entry(
                state=ConnectionState(server_id=config.id, status="connecting")
            )
            connection = _LiveConnection(
                config, self._session_factory, on_lost=self._connection_lost
            )
            try:
                await connection.open(timeout_s=self._connect_timeout_s)
            except asyncio.CancelledError:
                self._entries.pop(config.id, None)
                raise
            except Exception as error:
                message = _error_message(error)
                logger.warning("MCP server %s failed to connect: %s", config.id, message)
                state = ConnectionState(server_id=config.id, status="error", error=message)
                self._entries[config.id] = _Entry(state=state)
                return state

            if connection.lost_reason is not None:
                state = ConnectionState(
                    server_id=config.id, status="error", error=connection.lost_reason
                )
                self._entries[config.id] = _Entry(state=state)
                return state

            state = ConnectionState(server_id=config.id, status="connected")
            self._entries[config.id] = _Entry(state=state, connection=connection)
            logger.info("MCP server %s connected (%s)", config.id, config.transport_type)
            return state

    def _connection_lost(self, connection: _LiveConnection) -> None:
        entry = self._entries.get(connection.server_id)
        if entry is None or entry.connection is not connection:
            return
        logger.warning(
            "MCP server %s connection lost: %s", connection.server_id, connection.lost_reason
        )
        self._entries[connection.server_id] = _Entry(
            state=ConnectionState(
                server_id=connection.server_id, status="error", error=connection.lost_reason
            )
        )

    async def disconnect(self, server_id: str) -> None:
        async with self._lock_for(server_id):
            await self._teardown(server_id)

    async def _teardown(self, server_id: str) -> None:
        entry = self._entries.pop(server_id, None)
        if entry is None or entry.connection is None:
            return
        await entry.connection.close()
        logger.info("MCP server %s disconnected", server_id)

    async def close_all(self) -> None:
        for server_id in list(self._entries):
            await self.disconnect(server_id)

    def get_status(self, server_id: str) -> ConnectionState:
        entry = self._entries.get(server_id)
        if entry is None:
            return ConnectionState(server_id=server_id, status="disconnected")
        return entry.state

    def get_all_statuses(self) -> list[ConnectionState]:
        return [entry.state for entry in self._entries.values()]

    def _session(self, server_id: str) -> MCPSession | None:
        entry = self._entries.get(server_id)
        if entry is None or entry.state.status != "connected" or entry.connection is None:
            return None
        return entry.connection.session

    async def list_tools(self, server_id: str) -> list[ToolDescriptor]:
        """List tools of one server; best-effort, never raises."""
        session = self._session(server_id)
        if session is None:
            return []
        try:
            return await self._fetch_tools(session)
        except Exception as error:
            logger.warning(
                "tools/list failed for MCP server %s: %s", server_id, _error_message(error)
            )
            return []

    async def list_all_tools(self) -> list[ServerTools]:
        """Query every connected server; failing servers are left out."""
        targets = [
            (server_id, session)
            for server_id in list(self._entries)
            if (session := self._session(server_id)) is not None
        ]
        results = await asyncio.gather(
            *(self._fetch_tools(session) for _, session in targets),
            return_exceptions=True,
        )
        out: list[ServerTools] = []
        for (server_id, _), result in zip(targets, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(
                    "Omitting MCP server %s from tool catalog: %s",
                    server_id,
                    _error_message(result),
                )
                continue
            out.append(ServerTools(server_id=server_id, tools=result))
        return out

    async def _fetch_tools(self, session: MCPSession) -> list[ToolDescriptor]:
        result = await session.list_tools()
        return [tool_descriptor_from_sdk(tool) for tool in result.tools]

    async def call_tool(
        self,
        server_id: str,
        tool_name: str,
        args: dict[str, Any] | None = None,
    ) -> ToolCallResult:
        """Call one tool; failures come back as ``is_error`` results."""
        session = self._session(server_id)
        if session is None:
            return ToolCallResult(content=NOT_CONNECTED_MESSAGE, is_error=True)
        try:
            result = await session.call_tool(tool_name, arguments=dict(args or {}))
        except Exception as error:
            message = _error_message(error)
            logger.warning(
                "tools/call %s failed on MCP server %s: %s", tool_name, server_id, message
            )
            return ToolCallResult(content=message, is_error=True)
        return decode_tool_result(result)


_REGISTRY: ConnectionRegistry | None = None
_REGISTRY_LOCK = threading.Lock()


def get_connection_registry() -> ConnectionRegistry:
    """Return the process-wide connection registry, creating it once."""
    global _REGISTRY
    if _REGISTRY is not None:
        return _REGISTRY
    with _REGISTRY_LOCK:
        if _REGISTRY is None:
            _REGISTRY = ConnectionRegistry()
    return _REGISTRY


def reset_connection_registry() -> None:
    """Drop the registry singleton (for tests)."""
    global _REGISTRY
    with _REGISTRY_LOCK:
        _REGISTRY = None
