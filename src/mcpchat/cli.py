"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Command line entry point.

    mcpchat serve --config mcp_config.json --port 8000
    mcpchat chat --config mcp_config.json

``serve`` runs the HTTP API with uvicorn. ``chat`` runs an interactive
conversation in the terminal and asks before every tool call.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence

from .chat.loop import ConversationLoop, LoopEvent
from .chat.settings import ChatSettings
from .chat.store import InMemoryConversationStore
from .chat.types import ChatTurn
from .llms.errors import LLMConfigurationError
from .llms.gateway import ModelGateway
from .llms.settings import LLMSettings
from .mcp.config import InMemoryServerConfigStore, load_server_configs
from .mcp.registry import ConnectionRegistry
from .mcp.types import ServerConnectionConfig, TransportConfigError
from .server.app import ChatServer, ChatServerConfig

logger = logging.getLogger("mcpchat.cli")

COMMANDS_HELP = "/new  /reset  /tools  /quit"


def _load_configs(path: str | None) -> list[ServerConnectionConfig]:
    if not path:
        return []
    return load_server_configs(path)


class TerminalView:
    """Prints streamed assistant text and collects loop state changes."""

    def __init__(self) -> None:
        self.states: asyncio.Queue[LoopEvent] = asyncio.Queue()
        self._printed: dict[str, str] = {}

    def __call__(self, event: LoopEvent) -> None:
        if event.type == "state":
            self.states.put_nowait(event)
            return
        turn = event.turn
        if turn is None or turn.role != "assistant":
            return
        self._render(turn)

    def _render(self, turn: ChatTurn) -> None:
        shown = self._printed.get(turn.id, "")
        if turn.content.startswith(shown):
            delta = turn.content[len(shown):]
        else:
            delta = "\n" + turn.content
        if delta:
            if not shown:
                sys.stdout.write("\nassistant> ")
            sys.stdout.write(delta)
            sys.stdout.flush()
        self._printed[turn.id] = turn.content
        for call in turn.tool_calls or []:
            key = f"{turn.id}:{call.tool_call_id}"
            if call.status in ("completed", "error", "denied") and key not in self._printed:
                self._printed[key] = call.status
                sys.stdout.write(f"\n  [{call.status}] {call.server_name}.{call.tool_name}\n")
                sys.stdout.flush()


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def _review(loop: ConversationLoop) -> None:
    turn = loop.pending_approval
    if turn is None:
        return
    for call in turn.tool_calls or []:
        if call.status != "pending":
            continue
        args = json.dumps(call.args, ensure_ascii=False)
        answer = (await _ask(f"\nRun {call.server_name}.{call.tool_name}({args})? [y/N/a] ")).strip()
        if answer.lower() == "a":
            loop.approve_all(turn.id)
            return
        if answer.lower() in ("y", "yes"):
            loop.approve(turn.id, call.tool_call_id)
        else:
            loop.deny(turn.id, call.tool_call_id)


async def _drive(loop: ConversationLoop, view: TerminalView) -> None:
    """Follow one exchange until the loop is idle again."""
    started = False
    while True:
        event = await view.states.get()
        if event.state == "idle":
            if started:
                break
            continue
        started = True
        if event.state == "awaiting-approval":
            await _review(loop)
    sys.stdout.write("\n")
    sys.stdout.flush()


async def _print_tools(registry: ConnectionRegistry, configs: InMemoryServerConfigStore) -> None:
    catalog = await registry.list_all_tools()
    if not catalog:
        print("No connected MCP servers.")
        return
    for entry in catalog:
        config = configs.get(entry.server_id)
        print(f"{config.name if config else entry.server_id}:")
        for tool in entry.tools:
            print(f"  {tool.name}  {tool.description or ''}".rstrip())


async def run_chat(args: argparse.Namespace) -> int:
    llm_settings = LLMSettings.from_env()
    if args.model:
        llm_settings = LLMSettings(
            model=args.model,
            api_key=llm_settings.api_key,
            api_base_url=llm_settings.api_base_url,
            temperature=llm_settings.temperature,
            max_retries=llm_settings.max_retries,
            backoff_step_s=llm_settings.backoff_step_s,
        )
    try:
        llm_settings.require_api_key()
    except LLMConfigurationError as e:
        print(e, file=sys.stderr)
        return 2
    chat_settings = ChatSettings.from_env()

    configs = InMemoryServerConfigStore(_load_configs(args.config))
    registry = ConnectionRegistry(connect_timeout_s=chat_settings.connect_timeout_s)
    loop = ConversationLoop(
        gateway=ModelGateway(llm_settings),
        registry=registry,
        store=InMemoryConversationStore(),
        server_configs=configs,
        settings=chat_settings,
    )
    view = TerminalView()
    loop.subscribe(view)

    try:
        for config in configs.load_all():
            if not config.enabled:
                continue
            state = await registry.connect(config)
            suffix = f" ({state.error})" if state.error else ""
            print(f"{config.name or config.id}: {state.status}{suffix}")
        print(f"Commands: {COMMANDS_HELP}")

        while True:
            text = (await _ask("\nyou> ")).strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/new":
                await loop.new_conversation()
                print("Started a new conversation.")
                continue
            if text == "/reset":
                await loop.reset()
                print("Conversation cleared.")
                continue
            if text == "/tools":
                await _print_tools(registry, configs)
                continue
            await loop.send(text)
            await _drive(loop, view)
    except EOFError:
        pass
    finally:
        await loop.cancel()
        await registry.close_all()
    return 0


def run_serve(args: argparse.Namespace) -> int:
    chat_settings = ChatSettings.from_env()
    server = ChatServer(
        registry=ConnectionRegistry(connect_timeout_s=chat_settings.connect_timeout_s),
        config=ChatServerConfig(host=args.host, port=args.port),
        initial_servers=_load_configs(args.config),
    )
    server.run(log_level=args.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mcpchat", description="Chat with MCP tool calling")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--config", help="Path to an mcpServers JSON file")

    chat = sub.add_parser("chat", help="Chat in the terminal")
    chat.add_argument("--config", help="Path to an mcpServers JSON file")
    chat.add_argument("--model", help="Model id, e.g. gemini/gemini-2.0-flash")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "serve":
            return run_serve(args)
        return asyncio.run(run_chat(args))
    except TransportConfigError as e:
        print(f"Invalid server config: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nTerminated")
        return 130


if __name__ == "__main__":
    sys.exit(main())
