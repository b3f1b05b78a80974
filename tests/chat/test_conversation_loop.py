from __future__ import annotations

import asyncio

from mcpchat.chat import (
    DENIED_RESULT,
    ChatSettings,
    ConversationLoop,
    InMemoryConversationStore,
)
from mcpchat.chat.loop import TOOL_LIMIT_NOTICE
from mcpchat.llms import LLMSettings, ModelGateway
from mcpchat.llms.errors import CREDENTIALS_MESSAGE
from mcpchat.llms.types import StreamTextDeltaEvent, StreamToolCallDeltaEvent
from mcpchat.mcp import (
    InlineImage,
    InMemoryServerConfigStore,
    ServerConnectionConfig,
    ServerTools,
    ToolCallResult,
    ToolDescriptor,
)


def run_async(coro):
    return asyncio.run(coro)


class Hang:
    """Script item that blocks the stream until cancelled."""


class Gate:
    """Script item that pauses the stream until opened."""

    def __init__(self) -> None:
        self.reached = False
        self.opened = asyncio.Event()


class StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class ScriptedTransport:
    def __init__(self, *scripts, repeat_last: bool = False) -> None:
        self.scripts = list(scripts)
        self.repeat_last = repeat_last
        self.requests = []

    async def open_stream(self, request):
        self.requests.append(request)
        if self.repeat_last and len(self.scripts) == 1:
            script = self.scripts[0]
        else:
            script = self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script
        return self._iterate(script)

    async def _iterate(self, items):
        for item in items:
            if isinstance(item, Hang):
                await asyncio.sleep(3600)
            elif isinstance(item, Gate):
                item.reached = True
                await item.opened.wait()
            elif isinstance(item, Exception):
                raise item
            else:
                yield item


class FakeRegistry:
    def __init__(self, results: dict[str, ToolCallResult] | None = None) -> None:
        self.catalog = [
            ServerTools(
                server_id="fs",
                tools=[ToolDescriptor(name="read_dir"), ToolDescriptor(name="stat")],
            )
        ]
        self.results = results or {}
        self.calls: list[tuple[str, str, dict]] = []
        self.active = 0
        self.max_active = 0

    async def list_all_tools(self):
        return list(self.catalog)

    async def call_tool(self, server_id, tool_name, args):
        if not server_id:
            return ToolCallResult(content="Server is not connected.", is_error=True)
        self.calls.append((server_id, tool_name, dict(args)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.active -= 1
        return self.results.get(tool_name, ToolCallResult(content=f"{tool_name} done"))


class SlowStatRegistry(FakeRegistry):
    """Holds every ``stat`` call until ``release`` is set."""

    def __init__(self, results: dict[str, ToolCallResult] | None = None) -> None:
        super().__init__(results)
        self.release = asyncio.Event()

    async def call_tool(self, server_id, tool_name, args):
        if tool_name == "stat":
            await self.release.wait()
        return await super().call_tool(server_id, tool_name, args)


def text(delta: str) -> StreamTextDeltaEvent:
    return StreamTextDeltaEvent(delta=delta)


def tool_calls(*specs: tuple[str, str, str]) -> list[StreamToolCallDeltaEvent]:
    return [
        StreamToolCallDeltaEvent(
            index=index, call_id=call_id, tool_name=name, arguments_delta=arguments
        )
        for index, (call_id, name, arguments) in enumerate(specs)
    ]


def make_loop(transport, registry=None, settings=None, server_configs=None):
    store = InMemoryConversationStore()
    loop = ConversationLoop(
        gateway=ModelGateway(LLMSettings(api_key="test-key"), transport=transport),
        registry=registry or FakeRegistry(),
        store=store,
        server_configs=server_configs,
        settings=settings,
    )
    return loop, store


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


def _files_config() -> InMemoryServerConfigStore:
    return InMemoryServerConfigStore(
        [ServerConnectionConfig(id="fs", name="Files", transport_type="stdio", command="npx")]
    )


def test_approved_tool_call_runs_and_result_feeds_next_turn():
    transport = ScriptedTransport(
        [text("Checking."), *tool_calls(("c1", "mcp_fs__read_dir", '{"path": "."}'))],
        [text("Found "), text("2 files.")],
    )
    registry = FakeRegistry({"read_dir": ToolCallResult(content="a.txt\nb.txt")})
    loop, store = make_loop(transport, registry, server_configs=_files_config())
    states: list[str] = []
    loop.subscribe(lambda event: states.append(event.state) if event.type == "state" else None)

    async def scenario():
        turn_id = await loop.send("list files")
        await wait_until(lambda: loop.state == "awaiting-approval")
        pending = loop.pending_approval
        assert pending.id == turn_id
        call = pending.tool_calls[0]
        assert (call.server_id, call.server_name, call.tool_name) == ("fs", "Files", "read_dir")
        assert call.args == {"path": "."}
        assert call.status == "pending"
        assert loop.approve(pending.id, call.tool_call_id) is True
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    assert conversation.title == "list files"
    assert [turn.role for turn in conversation.turns] == ["user", "assistant", "assistant"]
    tool_turn = conversation.turns[1]
    assert tool_turn.content == "Checking."
    assert tool_turn.tool_calls[0].status == "completed"
    assert tool_turn.tool_calls[0].result == "a.txt\nb.txt"
    assert conversation.turns[2].content == "Found 2 files."
    assert registry.calls == [("fs", "read_dir", {"path": "."})]

    first, second = transport.requests
    assert [tool["function"]["name"] for tool in first.tools] == [
        "mcp_fs__read_dir",
        "mcp_fs__stat",
    ]
    results = second.messages[-1]
    assert results.role == "user"
    assert results.content[0]["tool_use_id"] == "c1"
    assert results.content[0]["content"] == "a.txt\nb.txt"
    assert states == [
        "awaiting-model-response",
        "awaiting-approval",
        "executing-tools",
        "awaiting-model-response",
        "idle",
    ]
    assert loop.state == "idle"


def test_denied_calls_skip_server_and_approved_calls_run_concurrently():
    transport = ScriptedTransport(
        tool_calls(
            ("c1", "mcp_fs__read_dir", '{"path": "/etc"}'),
            ("c2", "mcp_fs__read_dir", '{"path": "."}'),
            ("c3", "mcp_fs__stat", '{"path": "a.txt"}'),
        ),
        [text("Done.")],
    )
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("inspect")
        await wait_until(lambda: loop.state == "awaiting-approval")
        turn_id = loop.pending_approval.id
        assert loop.deny(turn_id, "c1") is True
        assert loop.deny(turn_id, "c1") is False
        assert loop.state == "awaiting-approval"
        assert loop.approve(turn_id, "c2") is True
        assert loop.state == "awaiting-approval"
        assert loop.approve(turn_id, "c3") is True
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    calls = {call.tool_call_id: call for call in conversation.turns[1].tool_calls}
    assert calls["c1"].status == "denied"
    assert calls["c1"].result == DENIED_RESULT
    assert calls["c2"].status == "completed"
    assert calls["c3"].status == "completed"
    assert sorted(registry.calls) == [
        ("fs", "read_dir", {"path": "."}),
        ("fs", "stat", {"path": "a.txt"}),
    ]
    assert registry.max_active == 2

    follow_up = transport.requests[1].messages[-1].content
    assert [part["tool_use_id"] for part in follow_up] == ["c1", "c2", "c3"]
    assert follow_up[0]["content"] == DENIED_RESULT


def test_deny_all_resolves_without_contacting_servers():
    transport = ScriptedTransport(
        tool_calls(("c1", "mcp_fs__read_dir", "{}"), ("c2", "mcp_fs__stat", "{}")),
        [text("Okay, I won't.")],
    )
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("inspect")
        await wait_until(lambda: loop.state == "awaiting-approval")
        assert loop.deny_all(loop.pending_approval.id) is True
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    assert registry.calls == []
    assert {call.status for call in conversation.turns[1].tool_calls} == {"denied"}
    assert conversation.turns[2].content == "Okay, I won't."


def test_mutations_on_turns_not_awaiting_review_are_ignored():
    transport = ScriptedTransport([text("Hi there.")])
    loop, _ = make_loop(transport)

    async def scenario():
        turn_id = await loop.send("hello")
        await loop.wait_idle()
        return turn_id

    turn_id = run_async(scenario())

    assert loop.approve(turn_id, "c1") is False
    assert loop.deny("unknown", "c1") is False
    assert loop.approve_all(turn_id) is False
    assert loop.deny_all(turn_id) is False


def test_tool_round_limit_stops_with_notice():
    transport = ScriptedTransport(
        tool_calls(("c", "mcp_fs__stat", "{}")),
        repeat_last=True,
    )
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    def auto_approve(event):
        if event.type == "state" and event.state == "awaiting-approval":
            loop.approve_all(loop.pending_approval.id)

    loop.subscribe(auto_approve)

    async def scenario():
        await loop.send("loop forever")
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    assert ChatSettings().max_tool_rounds == 5
    assert len(registry.calls) == 5
    assert len(transport.requests) == 6
    last = conversation.turns[-1]
    assert last.tool_calls is None
    assert TOOL_LIMIT_NOTICE in last.content
    assert loop.state == "idle"


def test_round_limit_is_configurable():
    transport = ScriptedTransport(tool_calls(("c", "mcp_fs__stat", "{}")), repeat_last=True)
    registry = FakeRegistry()
    loop, _ = make_loop(transport, registry, settings=ChatSettings(max_tool_rounds=1))
    loop.subscribe(
        lambda event: loop.approve_all(loop.pending_approval.id)
        if event.type == "state" and event.state == "awaiting-approval"
        else None
    )

    async def scenario():
        await loop.send("go")
        await loop.wait_idle()

    run_async(scenario())

    assert len(registry.calls) == 1
    assert len(transport.requests) == 2


def test_new_message_cancels_stream_without_further_writes():
    transport = ScriptedTransport(
        [text("partial"), Hang(), text(" never")],
        [text("fresh answer")],
    )
    loop, store = make_loop(transport)
    writes: list[tuple[str, str]] = []
    original_save = store.save_turn

    def recording_save(conversation_id, turn):
        writes.append((turn.id, turn.content))
        original_save(conversation_id, turn)

    store.save_turn = recording_save

    async def scenario():
        first_id = await loop.send("first")
        await wait_until(
            lambda: any(content == "partial" for turn_id, content in writes if turn_id == first_id)
        )
        marker = len(writes)
        await loop.send("second")
        await loop.wait_idle()
        return first_id, marker, store.get_conversation(loop.conversation_id)

    first_id, marker, conversation = run_async(scenario())

    assert [turn_id for turn_id, _ in writes[marker:]].count(first_id) == 0
    assert [(turn.role, turn.content) for turn in conversation.turns] == [
        ("user", "first"),
        ("assistant", "partial"),
        ("user", "second"),
        ("assistant", "fresh answer"),
    ]
    assert conversation.title == "first"


def test_cancel_while_awaiting_approval_leaves_calls_pending():
    transport = ScriptedTransport(tool_calls(("c1", "mcp_fs__read_dir", "{}")))
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("list")
        await wait_until(lambda: loop.state == "awaiting-approval")
        turn_id = loop.pending_approval.id
        await loop.cancel()
        return turn_id, store.get_conversation(loop.conversation_id)

    turn_id, conversation = run_async(scenario())

    assert loop.state == "idle"
    assert loop.pending_approval is None
    assert loop.approve(turn_id, "c1") is False
    assert conversation.turns[1].tool_calls[0].status == "pending"
    assert registry.calls == []


def test_reset_and_switch_cancel_and_change_conversation():
    transport = ScriptedTransport([text("one")], [text("two")])
    loop, store = make_loop(transport)

    async def scenario():
        await loop.send("hello")
        await loop.wait_idle()
        first = loop.conversation_id
        await loop.reset()
        cleared = store.get_conversation(first)
        second = await loop.new_conversation()
        await loop.send("again")
        await loop.wait_idle()
        await loop.switch(first)
        return first, second, cleared

    first, second, cleared = run_async(scenario())

    assert cleared.turns == []
    assert second != first
    assert loop.conversation_id == first
    assert [turn.content for turn in store.get_conversation(second).turns] == ["again", "two"]


def test_unresolvable_names_and_unknown_servers_fall_back():
    transport = ScriptedTransport(
        tool_calls(
            ("c1", "mcp_0123456789abcdef__read_dir", "{}"),
            ("c2", "weird_tool", "{}"),
        ),
        [text("ok")],
    )
    loop, store = make_loop(transport)

    async def scenario():
        await loop.send("go")
        await wait_until(lambda: loop.state == "awaiting-approval")
        pending = loop.pending_approval
        loop.approve_all(pending.id)
        await loop.wait_idle()
        return pending, store.get_conversation(loop.conversation_id)

    pending, conversation = run_async(scenario())

    known, weird = pending.tool_calls
    assert known.server_name == "01234567"
    assert (weird.server_id, weird.tool_name, weird.server_name) == ("", "weird_tool", "")
    weird_result = conversation.turns[1].tool_calls[1]
    assert weird_result.status == "error"
    assert weird_result.result == "Server is not connected."


def test_gateway_failure_is_shown_on_the_turn():
    transport = ScriptedTransport(StatusError(401))
    loop, store = make_loop(transport)

    async def scenario():
        await loop.send("hello")
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    assert conversation.turns[-1].content == f"⚠ {CREDENTIALS_MESSAGE}"
    assert loop.state == "idle"


def test_mid_stream_error_skips_tool_calls():
    transport = ScriptedTransport(
        [text("partial"), *tool_calls(("c1", "mcp_fs__stat", "{}")), RuntimeError("reset by peer")]
    )
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("hello")
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    last = conversation.turns[-1]
    assert last.content == "⚠ reset by peer"
    assert last.tool_calls is None
    assert registry.calls == []


def test_tool_images_are_attached_to_the_turn():
    image = InlineImage(mime_type="image/png", data="iVBORw0KGgo")
    transport = ScriptedTransport(
        tool_calls(("c1", "mcp_fs__stat", "{}")),
        [text("Here it is.")],
    )
    registry = FakeRegistry(
        {"stat": ToolCallResult(content="Image generated.", images=[image])}
    )
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("draw")
        await wait_until(lambda: loop.state == "awaiting-approval")
        loop.approve_all(loop.pending_approval.id)
        await loop.wait_idle()
        return store.get_conversation(loop.conversation_id)

    conversation = run_async(scenario())

    assert conversation.turns[1].images == [image]
    assert conversation.turns[1].tool_calls[0].result == "Image generated."


def test_blank_message_is_ignored():
    transport = ScriptedTransport()
    loop, _ = make_loop(transport)

    assert run_async(loop.send("   ")) is None
    assert transport.requests == []
    assert loop.conversation_id is None


def test_each_call_is_stored_as_soon_as_it_finishes():
    image = InlineImage(mime_type="image/png", data="iVBORw0KGgo")
    transport = ScriptedTransport(
        tool_calls(("fast", "mcp_fs__read_dir", "{}"), ("slow", "mcp_fs__stat", "{}")),
        [text("Both done.")],
    )
    registry = SlowStatRegistry({"read_dir": ToolCallResult(content="a.txt", images=[image])})
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("inspect")
        await wait_until(lambda: loop.state == "awaiting-approval")
        turn_id = loop.pending_approval.id
        conversation_id = loop.conversation_id

        def stored_turn():
            turns = store.get_conversation(conversation_id).turns
            return next(turn for turn in turns if turn.id == turn_id)

        loop.approve_all(turn_id)
        await wait_until(lambda: stored_turn().tool_calls[0].status == "completed")
        midway = stored_turn()
        state_midway = loop.state
        registry.release.set()
        await loop.wait_idle()
        return midway, state_midway, stored_turn()

    midway, state_midway, final = run_async(scenario())

    fast, slow = midway.tool_calls
    assert state_midway == "executing-tools"
    assert (fast.status, fast.result) == ("completed", "a.txt")
    assert (slow.status, slow.result) == ("approved", None)
    assert midway.images == [image]
    assert [call.status for call in final.tool_calls] == ["completed", "completed"]


def test_deleting_conversation_mid_stream_ends_cycle_quietly(caplog):
    gate = Gate()
    transport = ScriptedTransport(
        [text("partial"), gate, text(" more"), *tool_calls(("c1", "mcp_fs__stat", "{}"))]
    )
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("hi")
        conversation_id = loop.conversation_id
        await wait_until(lambda: gate.reached)
        store.delete_conversation(conversation_id)
        gate.opened.set()
        await loop.wait_idle()
        return conversation_id

    with caplog.at_level("INFO", logger="mcpchat.chat.loop"):
        conversation_id = run_async(scenario())

    assert store.get_conversation(conversation_id) is None
    assert "Conversation cycle failed" not in caplog.text
    assert f"Conversation {conversation_id} was deleted" in caplog.text
    assert loop.state == "idle"
    assert registry.calls == []
    assert len(transport.requests) == 1


def test_deleting_conversation_during_review_skips_execution():
    transport = ScriptedTransport(tool_calls(("c1", "mcp_fs__read_dir", "{}")))
    registry = FakeRegistry()
    loop, store = make_loop(transport, registry)

    async def scenario():
        await loop.send("list")
        await wait_until(lambda: loop.state == "awaiting-approval")
        turn_id = loop.pending_approval.id
        store.delete_conversation(loop.conversation_id)
        loop.approve_all(turn_id)
        await loop.wait_idle()

    run_async(scenario())

    assert registry.calls == []
    assert loop.state == "idle"
    assert loop.pending_approval is None
    assert loop.conversation_id is None
