"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Tool-calling conversation loop.

One ``ConversationLoop`` drives a single conversation at a time:

1. ``send`` appends the user turn plus an empty assistant turn and starts a
   cycle in a background task.
2. Model text is streamed into the assistant turn, persisting every delta.
3. When the model asks for tools, the calls are attached to the turn as
   ``pending`` entries and the cycle suspends until every entry has been
   approved or denied.
4. Approved calls execute concurrently; denied calls get a synthetic result.
5. The results are sent back to the model in a fresh assistant turn, and the
   cycle repeats until the model stops asking for tools or the round limit
   is reached.

Starting a new message, switching conversations or resetting cancels the
running cycle; a cancelled cycle never writes to the store again.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from ..llms.contents import build_contents
from ..llms.errors import GatewayError
from ..llms.gateway import ModelGateway
from ..llms.tool_export import build_tool_declarations
from ..llms.types import FunctionResult, Message, ToolCall, ToolDefinition
from ..mcp.config import ServerConfigStore
from ..mcp.naming import from_namespaced
from ..mcp.types import ServerTools, ToolCallResult, ToolNameError
from .settings import ChatSettings
from .store import ConversationNotFound, ConversationStore
from .types import DEFAULT_TITLE, ChatTurn, ToolCallInfo, generate_title, new_id

logger = logging.getLogger("mcpchat.chat.loop")

LoopState = Literal["idle", "awaiting-model-response", "awaiting-approval", "executing-tools"]

ERROR_PREFIX = "⚠ "
TOOL_LIMIT_NOTICE = "Tool call limit reached. Stopping here; send another message to continue."


class ToolRegistry(Protocol):
    """The parts of ``ConnectionRegistry`` the loop depends on."""

    async def list_all_tools(self) -> list[ServerTools]: ...

    async def call_tool(
        self, server_id: str, tool_name: str, args: dict[str, Any]
    ) -> ToolCallResult: ...


@dataclass(frozen=True, slots=True)
class LoopEvent:
    """
    Notification delivered to subscribers.

    ``type`` is ``state`` for state changes and ``turn`` whenever a turn was
    persisted; ``turn`` then holds a snapshot of it.
    """

    type: Literal["state", "turn"]
    conversation_id: str | None
    state: LoopState
    turn: ChatTurn | None = None


LoopListener = Callable[[LoopEvent], None]


class _StreamFailed(Exception):
    """Model stream reported an error after output started."""


@dataclass(slots=True)
class _Suspension:
    conversation_id: str
    turn: ChatTurn
    changed: asyncio.Event


class ConversationLoop:
    """
    Orchestrates model turns, tool approval and tool execution.

    Args:
        gateway: Streams model turns.
        registry: Supplies the tool catalog and executes tool calls.
        store: Conversation persistence.
        server_configs: Used to show a friendly server name on tool calls.
        settings: Round limit for tool calls.
    """

    def __init__(
        self,
        *,
        gateway: ModelGateway,
        registry: ToolRegistry,
        store: ConversationStore,
        server_configs: ServerConfigStore | None = None,
        settings: ChatSettings | None = None,
    ) -> None:
        self._gateway = gateway
        self._registry = registry
        self._store = store
        self._server_configs = server_configs
        self._settings = settings or ChatSettings()

        self._state: LoopState = "idle"
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._suspended: _Suspension | None = None
        self._listeners: list[LoopListener] = []

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def conversation_id(self) -> str | None:
        return self._store.get_active_id()

    @property
    def pending_approval(self) -> ChatTurn | None:
        """Snapshot of the turn whose tool calls await review, if any."""
        if self._suspended is None:
            return None
        return copy.deepcopy(self._suspended.turn)

    def subscribe(self, listener: LoopListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: LoopEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Loop listener failed")

    def _live(self, generation: int) -> bool:
        return generation == self._generation

    def _set_state(self, generation: int, state: LoopState) -> None:
        if not self._live(generation) or state == self._state:
            return
        self._state = state
        self._emit(LoopEvent(type="state", conversation_id=self.conversation_id, state=state))

    def _persist(self, generation: int, conversation_id: str, turn: ChatTurn) -> bool:
        if not self._live(generation):
            return False
        try:
            self._store.save_turn(conversation_id, turn)
        except ConversationNotFound:
            # Deleted under a running cycle; treat it as a cancellation.
            logger.info("Conversation %s was deleted; stopping its cycle", conversation_id)
            self._abandon()
            return False
        self._emit(
            LoopEvent(
                type="turn",
                conversation_id=conversation_id,
                state=self._state,
                turn=copy.deepcopy(turn),
            )
        )
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _abandon(self) -> None:
        """Fence off the running generation so it never writes again."""
        self._generation += 1
        self._suspended = None
        if self._state != "idle":
            self._state = "idle"
            self._emit(LoopEvent(type="state", conversation_id=self.conversation_id, state="idle"))

    def _invalidate(self) -> asyncio.Task[None] | None:
        self._abandon()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def cancel(self) -> None:
        """Stop in-flight work; nothing is written for it afterwards."""
        previous = self._invalidate()
        while previous is not None:
            await asyncio.wait({previous})
            previous = self._invalidate() if self._task is not None else None

    async def wait_idle(self) -> None:
        """Wait for the current cycle (if any) to finish."""
        while self._task is not None:
            task = self._task
            await asyncio.wait({task})
            if self._task is task:
                self._task = None

    async def new_conversation(self) -> str:
        await self.cancel()
        conversation = self._store.create_conversation()
        self._store.set_active_id(conversation.id)
        return conversation.id

    async def switch(self, conversation_id: str) -> None:
        await self.cancel()
        self._store.set_active_id(conversation_id)

    async def reset(self) -> None:
        """Cancel in-flight work and clear the active conversation's turns."""
        await self.cancel()
        conversation_id = self.conversation_id
        if conversation_id is not None:
            self._store.clear_turns(conversation_id)

    async def send(self, text: str) -> str | None:
        """
        Start a new exchange with the user's message.

        Returns the id of the assistant turn that will receive the answer, or
        ``None`` when the message is blank.
        """
        if not text.strip():
            return None
        await self.cancel()

        conversation_id = self.conversation_id
        if conversation_id is None or self._store.get_conversation(conversation_id) is None:
            conversation_id = await self.new_conversation()
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)

        generation = self._generation
        user_turn = ChatTurn(role="user", content=text)
        assistant = ChatTurn(role="assistant")
        history = [*conversation.turns, user_turn]
        if conversation.title == DEFAULT_TITLE and not any(
            turn.role == "user" for turn in conversation.turns
        ):
            self._store.set_title(conversation_id, generate_title(text))
        self._persist(generation, conversation_id, user_turn)
        self._persist(generation, conversation_id, assistant)

        self._set_state(generation, "awaiting-model-response")
        self._task = asyncio.create_task(
            self._run(generation, conversation_id, history, assistant)
        )
        return assistant.id

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def _suspended_turn(self, turn_id: str) -> _Suspension | None:
        suspension = self._suspended
        if suspension is None or suspension.turn.id != turn_id:
            return None
        return suspension

    def _resolve(
        self, turn_id: str, call_ids: Sequence[str] | None, approve: bool
    ) -> bool:
        suspension = self._suspended_turn(turn_id)
        if suspension is None:
            return False
        changed = False
        for call in suspension.turn.tool_calls or []:
            if call.status != "pending":
                continue
            if call_ids is not None and call.tool_call_id not in call_ids:
                continue
            if approve:
                call.approve()
            else:
                call.deny()
            changed = True
        if changed:
            self._persist(self._generation, suspension.conversation_id, suspension.turn)
            suspension.changed.set()
        return changed

    def approve(self, turn_id: str, tool_call_id: str) -> bool:
        return self._resolve(turn_id, [tool_call_id], approve=True)

    def deny(self, turn_id: str, tool_call_id: str) -> bool:
        return self._resolve(turn_id, [tool_call_id], approve=False)

    def approve_all(self, turn_id: str) -> bool:
        return self._resolve(turn_id, None, approve=True)

    def deny_all(self, turn_id: str) -> bool:
        return self._resolve(turn_id, None, approve=False)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _run(
        self,
        generation: int,
        conversation_id: str,
        history: list[ChatTurn],
        assistant: ChatTurn,
    ) -> None:
        rounds = 0
        results: list[FunctionResult] | None = None
        try:
            while self._live(generation):
                self._set_state(generation, "awaiting-model-response")
                declarations = build_tool_declarations(await self._registry.list_all_tools())
                contents = build_contents(history, results)
                intents = await self._stream(
                    generation, conversation_id, assistant, contents, declarations
                )
                if not intents or not self._live(generation):
                    break
                if rounds >= self._settings.max_tool_rounds:
                    logger.info(
                        "Tool round limit (%d) reached; dropping %d call(s)",
                        self._settings.max_tool_rounds,
                        len(intents),
                    )
                    separator = "\n\n" if assistant.content else ""
                    assistant.content = f"{assistant.content}{separator}{TOOL_LIMIT_NOTICE}"
                    self._persist(generation, conversation_id, assistant)
                    break
                rounds += 1

                assistant.tool_calls = [self._tool_call_info(intent) for intent in intents]
                self._persist(generation, conversation_id, assistant)
                await self._await_approval(generation, conversation_id, assistant)
                if not self._live(generation):
                    break

                self._set_state(generation, "executing-tools")
                await self._execute(generation, conversation_id, assistant)
                if not self._live(generation):
                    break

                results = [
                    FunctionResult(
                        call_id=call.tool_call_id,
                        name=call.namespaced_name,
                        content=call.result or "",
                        is_error=call.status == "error",
                    )
                    for call in assistant.tool_calls
                ]
                history = [*history, assistant]
                assistant = ChatTurn(role="assistant")
                self._persist(generation, conversation_id, assistant)
        except asyncio.CancelledError:
            raise
        except (GatewayError, _StreamFailed) as error:
            self._fail(generation, conversation_id, assistant, str(error))
        except Exception as error:
            logger.exception("Conversation cycle failed")
            self._fail(generation, conversation_id, assistant, str(error) or type(error).__name__)
        finally:
            self._set_state(generation, "idle")

    async def _stream(
        self,
        generation: int,
        conversation_id: str,
        assistant: ChatTurn,
        contents: list[Message],
        declarations: list[ToolDefinition],
    ) -> list[ToolCall]:
        intents: list[ToolCall] = []
        events = await self._gateway.open_turn(contents, declarations)
        async with contextlib.aclosing(events):
            async for event in events:
                if not self._live(generation):
                    return []
                if event.type == "text":
                    assistant.content += event.text
                    self._persist(generation, conversation_id, assistant)
                elif event.type == "tool_calls":
                    intents = event.tool_calls
                elif event.type == "error":
                    raise _StreamFailed(event.error or "The model stream failed.")
        return intents

    def _fail(self, generation: int, conversation_id: str, turn: ChatTurn, message: str) -> None:
        turn.content = f"{ERROR_PREFIX}{message}"
        self._persist(generation, conversation_id, turn)

    def _server_name(self, server_id: str) -> str:
        if self._server_configs is not None and server_id:
            config = self._server_configs.get(server_id)
            if config is not None and config.name:
                return config.name
        return server_id[:8]

    def _tool_call_info(self, intent: ToolCall) -> ToolCallInfo:
        try:
            parsed = from_namespaced(intent.tool_name)
            server_id, tool_name = parsed.server_id, parsed.tool_name
        except ToolNameError:
            server_id, tool_name = "", intent.tool_name
        return ToolCallInfo(
            tool_call_id=intent.id or new_id(),
            tool_name=tool_name,
            server_id=server_id,
            server_name=self._server_name(server_id),
            args=dict(intent.arguments),
        )

    async def _await_approval(
        self, generation: int, conversation_id: str, turn: ChatTurn
    ) -> None:
        suspension = _Suspension(conversation_id, turn, asyncio.Event())
        self._suspended = suspension
        self._set_state(generation, "awaiting-approval")
        try:
            while self._live(generation) and not all(
                call.is_resolved for call in turn.tool_calls or []
            ):
                suspension.changed.clear()
                await suspension.changed.wait()
        finally:
            if self._suspended is suspension:
                self._suspended = None

    async def _execute(self, generation: int, conversation_id: str, turn: ChatTurn) -> None:
        async def run(call: ToolCallInfo) -> None:
            if call.status != "approved":
                return
            try:
                outcome = await self._registry.call_tool(call.server_id, call.tool_name, call.args)
            except Exception as error:
                logger.exception("Tool %s on %s failed", call.tool_name, call.server_id)
                if self._live(generation):
                    call.fail(str(error) or type(error).__name__)
                    self._persist(generation, conversation_id, turn)
                return
            if not self._live(generation):
                return
            call.complete(outcome)
            if outcome.images:
                turn.images = [*(turn.images or []), *outcome.images]
            self._persist(generation, conversation_id, turn)

        await asyncio.gather(*(run(call) for call in turn.tool_calls or []))
