from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from mcp import types as mcp_types

from mcpchat.mcp import (
    ConnectionRegistry,
    create_server_config,
    get_connection_registry,
    reset_connection_registry,
)
from mcpchat.mcp.registry import NOT_CONNECTED_MESSAGE


def run_async(coro):
    return asyncio.run(coro)


class FakeSession:
    def __init__(self, tools: list[str], *, fail_listing: bool = False) -> None:
        self.tools = tools
        self.fail_listing = fail_listing
        self.calls: list[tuple[str, dict]] = []

    async def list_tools(self):
        if self.fail_listing:
            raise RuntimeError("listing exploded")
        return mcp_types.ListToolsResult(
            tools=[
                mcp_types.Tool(name=name, description=f"{name} tool", inputSchema={"type": "object"})
                for name in self.tools
            ]
        )

    async def call_tool(self, name, arguments=None):
        self.calls.append((name, dict(arguments or {})))
        if name == "explode":
            raise RuntimeError("tool exploded")
        return mcp_types.CallToolResult(
            content=[mcp_types.TextContent(type="text", text=f"{name} ok")]
        )


class FakeFactory:
    """Session factory recording open/close per server id."""

    def __init__(self, sessions: dict[str, FakeSession], failures: dict | None = None) -> None:
        self.sessions = sessions
        self.failures = failures or {}
        self.opened: list[str] = []
        self.closed: list[str] = []

    @asynccontextmanager
    async def __call__(self, config):
        failure = self.failures.get(config.name)
        if failure is not None:
            raise failure
        self.opened.append(config.name)
        try:
            yield self.sessions[config.name]
        finally:
            self.closed.append(config.name)


def _config(name: str):
    return create_server_config(name=name, transport_type="streamable-http", url="http://x/mcp")


def test_unknown_server_reports_disconnected():
    registry = ConnectionRegistry()

    state = registry.get_status("nope")

    assert state.status == "disconnected"
    assert state.error is None
    assert registry.get_all_statuses() == []


def test_connect_lists_and_calls_tools():
    factory = FakeFactory({"fs": FakeSession(["read_dir"])})
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("fs")

    async def scenario():
        state = await registry.connect(config)
        tools = await registry.list_tools(config.id)
        result = await registry.call_tool(config.id, "read_dir", {"path": "."})
        await registry.close_all()
        return state, tools, result

    state, tools, result = run_async(scenario())

    assert state.status == "connected"
    assert [tool.name for tool in tools] == ["read_dir"]
    assert result.content == "read_dir ok"
    assert result.is_error is False
    assert factory.sessions["fs"].calls == [("read_dir", {"path": "."})]
    assert factory.closed == ["fs"]


def test_reconnect_replaces_existing_connection():
    factory = FakeFactory({"fs": FakeSession(["read_dir"])})
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("fs")

    async def scenario():
        await registry.connect(config)
        await registry.connect(config)
        statuses = registry.get_all_statuses()
        await registry.close_all()
        return statuses

    statuses = run_async(scenario())

    assert len(statuses) == 1
    assert statuses[0].status == "connected"
    assert factory.opened == ["fs", "fs"]
    assert factory.closed == ["fs", "fs"]


def test_concurrent_connects_for_same_id_leave_one_connection():
    factory = FakeFactory({"fs": FakeSession(["read_dir"])})
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("fs")

    async def scenario():
        await asyncio.gather(registry.connect(config), registry.connect(config))
        open_count = len(factory.opened) - len(factory.closed)
        await registry.close_all()
        return open_count

    assert run_async(scenario()) == 1


def test_failed_connect_records_error_without_connection():
    factory = FakeFactory({}, failures={"broken": ConnectionError("refused")})
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("broken")

    async def scenario():
        state = await registry.connect(config)
        result = await registry.call_tool(config.id, "anything", {})
        tools = await registry.list_tools(config.id)
        return state, result, tools

    state, result, tools = run_async(scenario())

    assert state.status == "error"
    assert state.error == "refused"
    assert registry.get_status(config.id).status == "error"
    assert result.is_error is True
    assert result.content == NOT_CONNECTED_MESSAGE
    assert tools == []


def test_connect_timeout_becomes_error_state():
    class HangingFactory:
        @asynccontextmanager
        async def __call__(self, config):
            await asyncio.sleep(3600)
            yield FakeSession([])

    registry = ConnectionRegistry(session_factory=HangingFactory(), connect_timeout_s=0.05)
    config = _config("slow")

    state = run_async(registry.connect(config))

    assert state.status == "error"
    assert state.error == "Connection timed out"


def test_invalid_transport_config_becomes_error_state():
    registry = ConnectionRegistry()
    bad_url = create_server_config(name="web", transport_type="streamable-http", url="ftp://x")
    no_command = create_server_config(name="local", transport_type="stdio")

    async def scenario():
        return await registry.connect(bad_url), await registry.connect(no_command)

    url_state, command_state = run_async(scenario())

    assert url_state.status == "error"
    assert "http or https" in url_state.error
    assert command_state.status == "error"
    assert command_state.error == "Command is not configured"


def test_disconnect_is_idempotent():
    factory = FakeFactory({"fs": FakeSession(["read_dir"])})
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("fs")

    async def scenario():
        await registry.connect(config)
        await registry.disconnect(config.id)
        await registry.disconnect(config.id)
        await registry.disconnect("never-connected")
        return await registry.call_tool(config.id, "read_dir", {})

    result = run_async(scenario())

    assert registry.get_status(config.id).status == "disconnected"
    assert result.content == NOT_CONNECTED_MESSAGE
    assert factory.closed == ["fs"]


def test_list_all_tools_omits_failing_servers():
    factory = FakeFactory(
        {
            "fs": FakeSession(["read_dir", "read_file"]),
            "web": FakeSession([], fail_listing=True),
            "git": FakeSession(["log"]),
        }
    )
    registry = ConnectionRegistry(session_factory=factory)
    configs = {name: _config(name) for name in ("fs", "web", "git")}

    async def scenario():
        for config in configs.values():
            await registry.connect(config)
        catalog = await registry.list_all_tools()
        await registry.close_all()
        return catalog

    catalog = run_async(scenario())

    by_server = {entry.server_id: [tool.name for tool in entry.tools] for entry in catalog}
    assert by_server == {
        configs["fs"].id: ["read_dir", "read_file"],
        configs["git"].id: ["log"],
    }


def test_tool_exceptions_become_error_results():
    factory = FakeFactory({"fs": FakeSession(["explode"])})
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("fs")

    async def scenario():
        await registry.connect(config)
        result = await registry.call_tool(config.id, "explode", {})
        await registry.close_all()
        return result

    result = run_async(scenario())

    assert result.is_error is True
    assert result.content == "tool exploded"


def test_registry_singleton_is_shared_until_reset():
    reset_connection_registry()
    first = get_connection_registry()
    second = get_connection_registry()
    reset_connection_registry()
    third = get_connection_registry()
    reset_connection_registry()

    assert first is second
    assert third is not first


class DroppingFactory:
    """Sessions whose transport fails once ``drop`` is set, like an exited server process."""

    def __init__(self) -> None:
        self.drop: asyncio.Event | None = None

    @asynccontextmanager
    async def __call__(self, config):
        drop = self.drop = asyncio.Event()
        owner = asyncio.current_task()

        async def watch():
            await drop.wait()
            owner.cancel()

        watcher = asyncio.create_task(watch())
        try:
            yield FakeSession(["read_dir"])
        except asyncio.CancelledError:
            if drop.is_set():
                raise ConnectionError("server process exited") from None
            raise
        finally:
            watcher.cancel()


def test_connection_dropped_by_server_moves_to_error():
    factory = DroppingFactory()
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("files")

    async def scenario():
        connected = await registry.connect(config)
        factory.drop.set()
        for _ in range(100):
            if registry.get_status(config.id).status != "connected":
                break
            await asyncio.sleep(0)
        lost = registry.get_status(config.id)
        result = await registry.call_tool(config.id, "read_dir", {})
        await registry.disconnect(config.id)
        return connected, lost, result, registry.get_status(config.id)

    connected, lost, result, after = run_async(scenario())

    assert connected.status == "connected"
    assert (lost.status, lost.error) == ("error", "server process exited")
    assert result.is_error is True
    assert result.content == NOT_CONNECTED_MESSAGE
    assert after.status == "disconnected"


def test_closing_a_healthy_connection_is_not_reported_as_lost():
    factory = DroppingFactory()
    registry = ConnectionRegistry(session_factory=factory)
    config = _config("files")

    async def scenario():
        await registry.connect(config)
        await registry.disconnect(config.id)
        return registry.get_all_statuses()

    assert run_async(scenario()) == []
