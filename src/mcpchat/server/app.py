"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

HTTP API for mcpchat built on FastAPI.

Endpoints:
    POST /api/mcp/connect        connect (or reconnect) one MCP server
    POST /api/mcp/disconnect     drop one MCP server connection
    GET  /api/mcp/status         connection state of every tracked server
    GET  /api/mcp/tools          tools of one server (``?serverId=``)
    GET  /api/mcp/tools/all      tools of every connected server
    POST /api/mcp/call-tool      execute one tool
    POST /api/chat               stream one model turn as server-sent events
    GET  /health                 liveness probe
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import uvicorn
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from ..llms.contents import build_contents
from ..llms.errors import GatewayError, LLMConfigurationError
from ..llms.gateway import ModelGateway
from ..llms.tool_export import build_tool_declarations
from ..llms.types import GatewayEvent
from ..mcp.config import InMemoryServerConfigStore, ServerConfigStore
from ..mcp.registry import ConnectionRegistry, get_connection_registry
from ..mcp.types import ServerConnectionConfig
from .models import CallToolRequest, ChatRequest, DisconnectRequest
from .sse import DONE_FRAME, SSE_HEADERS, event_frame

logger = logging.getLogger("mcpchat.server")

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class ChatServerConfig:
    """
    Configuration for the HTTP server.

    Attributes:
        name: Application title.
        version: Application version string.
        host: Bind host for uvicorn.
        port: Bind port for uvicorn.
        cors_origins: List of allowed CORS origins.
    """

    name: str = "mcpchat"
    version: str = "0.1.0"
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


class _BadRequest(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise _BadRequest("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise _BadRequest("Request body must be a JSON object")
    return body


async def _read_body(request: Request, model: type[ModelT]) -> ModelT:
    body = await _read_json(request)
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise _BadRequest(str(e)) from e


class ChatServer:
    """
    FastAPI application exposing the MCP registry and the chat stream.

    Args:
        registry: Connection registry; the process-wide one by default.
        gateway_factory: Builds the model gateway per chat request, so
            environment changes to the API key are picked up without a
            restart.
        config_store: Where connected server configs are recorded.
        config: Server settings.
        initial_servers: Configs recorded at construction; the enabled ones
            are connected when the app starts.
    """

    def __init__(
        self,
        *,
        registry: ConnectionRegistry | None = None,
        gateway_factory: Callable[[], ModelGateway] | None = None,
        config_store: ServerConfigStore | None = None,
        config: ChatServerConfig | None = None,
        initial_servers: list[ServerConnectionConfig] | None = None,
    ) -> None:
        self._registry = registry or get_connection_registry()
        self._gateway_factory = gateway_factory or ModelGateway
        self._config_store = config_store or InMemoryServerConfigStore()
        for server in initial_servers or []:
            self._config_store.upsert(server)
        self._config = config or ChatServerConfig()
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def config(self) -> ChatServerConfig:
        return self._config

    def _create_router(self) -> APIRouter:
        router = APIRouter()
        registry = self._registry

        @router.get("/health")
        async def health() -> dict[str, Any]:
            return {
                "status": "ok",
                "server": self._config.name,
                "version": self._config.version,
                "connected": sum(
                    1 for state in registry.get_all_statuses() if state.status == "connected"
                ),
            }

        @router.post("/api/mcp/connect")
        async def connect(request: Request):
            try:
                body = await _read_json(request)
            except _BadRequest as e:
                return _error(400, e.message)
            if not body.get("id") or not body.get("transportType"):
                return _error(400, "id and transportType are required")
            try:
                server = ServerConnectionConfig.model_validate(body)
            except ValidationError as e:
                return _error(400, str(e))
            self._config_store.upsert(server)
            state = await registry.connect(server)
            return state.to_dict()

        @router.post("/api/mcp/disconnect")
        async def disconnect(request: Request):
            try:
                body = await _read_body(request, DisconnectRequest)
            except _BadRequest as e:
                return _error(400, e.message)
            if not body.server_id:
                return _error(400, "serverId is required")
            await registry.disconnect(body.server_id)
            return {"serverId": body.server_id, "status": "disconnected"}

        @router.get("/api/mcp/status")
        async def status():
            return {"statuses": [state.to_dict() for state in registry.get_all_statuses()]}

        @router.get("/api/mcp/tools")
        async def tools(server_id: str = Query(default="", alias="serverId")):
            if not server_id:
                return _error(400, "serverId is required")
            listing = await registry.list_tools(server_id)
            return {"tools": [tool.to_dict() for tool in listing]}

        @router.get("/api/mcp/tools/all")
        async def all_tools():
            catalog = await registry.list_all_tools()
            return {"servers": [entry.to_dict() for entry in catalog]}

        @router.post("/api/mcp/call-tool")
        async def call_tool(request: Request):
            try:
                body = await _read_body(request, CallToolRequest)
            except _BadRequest as e:
                return _error(400, e.message)
            if not body.server_id or not body.tool_name:
                return _error(400, "serverId and toolName are required")
            result = await registry.call_tool(body.server_id, body.tool_name, body.args)
            return result.to_dict()

        @router.post("/api/chat")
        async def chat(request: Request):
            gateway = self._gateway_factory()
            try:
                gateway.settings.require_api_key()
            except LLMConfigurationError as e:
                return _error(e.status_code or 500, str(e))
            try:
                body = await _read_body(request, ChatRequest)
            except _BadRequest as e:
                return _error(400, e.message)
            if not body.messages:
                return _error(400, "messages must not be empty")

            turns = [message.to_turn() for message in body.messages]
            results = [result.to_result() for result in body.tool_results or []]
            contents = build_contents(turns, results)
            declarations = build_tool_declarations(await registry.list_all_tools())
            try:
                events = await gateway.open_turn(contents, declarations)
            except GatewayError as e:
                return _error(e.status_code or 500, str(e))

            return StreamingResponse(
                _event_stream(events),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        return router

    def _create_app(self) -> FastAPI:
        registry = self._registry

        @contextlib.asynccontextmanager
        async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
            enabled = [server for server in self._config_store.load_all() if server.enabled]
            if enabled:
                states = await asyncio.gather(*(registry.connect(server) for server in enabled))
                for state in states:
                    logger.info("MCP server %s: %s", state.server_id, state.status)
            yield
            logger.info("Shutting down; closing MCP connections")
            await registry.close_all()

        app = FastAPI(
            title=self._config.name,
            version=self._config.version,
            description="mcpchat: chat with MCP tool calling",
            lifespan=lifespan,
        )
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        app.include_router(self._create_router())
        return app

    def run(self, **kwargs: Any) -> None:
        """
        Start the server using uvicorn.

        Args:
            **kwargs: Additional arguments passed to ``uvicorn.run()``.
        """
        uvicorn.run(
            self._app,
            host=kwargs.pop("host", self._config.host),
            port=kwargs.pop("port", self._config.port),
            **kwargs,
        )


async def _event_stream(events: AsyncIterator[GatewayEvent]) -> AsyncIterator[str]:
    failed = False
    async with contextlib.aclosing(events):
        async for event in events:
            if event.type == "error":
                failed = True
            yield event_frame(event)
    if not failed:
        yield DONE_FRAME


def create_app(
    *,
    registry: ConnectionRegistry | None = None,
    gateway_factory: Callable[[], ModelGateway] | None = None,
    config_store: ServerConfigStore | None = None,
    config: ChatServerConfig | None = None,
    initial_servers: list[ServerConnectionConfig] | None = None,
) -> FastAPI:
    """Build the FastAPI application."""
    return ChatServer(
        registry=registry,
        gateway_factory=gateway_factory,
        config_store=config_store,
        config=config,
        initial_servers=initial_servers,
    ).app
