"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Model tool-call gateway.

Sends one conversation turn to the model and streams the answer back as
``GatewayEvent`` items: text deltas as they arrive, then (once the stream has
ended) the complete set of tool calls the model asked for.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence

from .errors import GENERIC_MESSAGE, GatewayError, LLMError, user_message_for_status
from .runtime.retry import Sleep, call_with_retry, status_code_of
from .runtime.streaming import ToolCallAccumulator
from .settings import LLMSettings
from .transport import LiteLLMTransport, ModelTransport
from .types import (
    GatewayEvent,
    Message,
    ModelRequest,
    StreamTextDeltaEvent,
    StreamToolCallDeltaEvent,
    ToolDefinition,
    TransportStreamEvent,
)

logger = logging.getLogger("mcpchat.llms.gateway")


def _mid_stream_message(error: Exception) -> str:
    status = status_code_of(error)
    if status is not None:
        return user_message_for_status(status)
    return str(error) or GENERIC_MESSAGE


class ModelGateway:
    """
    Streams model turns with rate-limit retry and classified failures.

    Args:
        settings: Model id, credentials and retry policy. Loaded from the
            environment when omitted.
        transport: Provider transport. Defaults to ``LiteLLMTransport``.
        sleep: Awaitable used between retries.
    """

    def __init__(
        self,
        settings: LLMSettings | None = None,
        *,
        transport: ModelTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings or LLMSettings.from_env()
        self._transport = transport or LiteLLMTransport(self._settings)
        self._sleep = sleep

    @property
    def settings(self) -> LLMSettings:
        return self._settings

    def _request(
        self, contents: Sequence[Message], declarations: Sequence[ToolDefinition]
    ) -> ModelRequest:
        return ModelRequest(
            model=self._settings.model,
            messages=list(contents),
            tools=list(declarations) or None,
            temperature=self._settings.temperature,
        )

    async def open_turn(
        self,
        contents: Sequence[Message],
        declarations: Sequence[ToolDefinition] = (),
    ) -> AsyncIterator[GatewayEvent]:
        """
        Open the model stream for one turn.

        Rate-limited attempts are retried with linear backoff. Any other
        failure, or running out of retries, raises ``GatewayError`` carrying
        the upstream status and a user-presentable message.
        """
        request = self._request(contents, declarations)
        try:
            stream = await call_with_retry(
                lambda: self._transport.open_stream(request),
                policy=self._settings.retry_policy(),
                sleep=self._sleep,
            )
        except LLMError as error:
            status = error.status_code or 500
            logger.warning("Model call failed (status %d): %s", status, error)
            raise GatewayError(user_message_for_status(status), status_code=status) from error
        return self._events(stream)

    async def stream_turn(
        self,
        contents: Sequence[Message],
        declarations: Sequence[ToolDefinition] = (),
    ) -> AsyncIterator[GatewayEvent]:
        """Open and consume one turn; see ``open_turn`` for failure semantics."""
        events = await self.open_turn(contents, declarations)
        async for event in events:
            yield event

    async def _events(
        self, stream: AsyncIterator[TransportStreamEvent]
    ) -> AsyncIterator[GatewayEvent]:
        calls = ToolCallAccumulator()
        try:
            async for event in stream:
                if isinstance(event, StreamTextDeltaEvent):
                    if event.delta:
                        yield GatewayEvent(type="text", text=event.delta)
                elif isinstance(event, StreamToolCallDeltaEvent):
                    calls.add(event)
        except Exception as error:
            logger.warning("Model stream failed mid-turn: %s", error)
            yield GatewayEvent(type="error", error=_mid_stream_message(error))
            return
        if calls:
            tool_calls = calls.finish()
            if tool_calls:
                yield GatewayEvent(type="tool_calls", tool_calls=tool_calls)
