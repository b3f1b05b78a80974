"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Model transports.

``ModelTransport`` is the seam between the gateway and a concrete provider
SDK. The default ``LiteLLMTransport`` talks to any LiteLLM-supported model
(Gemini by default) through ``litellm.acompletion(stream=True)``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import litellm

from .settings import LLMSettings
from .types import (
    Message,
    ModelRequest,
    StreamMessageStopEvent,
    StreamTextDeltaEvent,
    StreamToolCallDeltaEvent,
    TransportStreamEvent,
)

logger = logging.getLogger("mcpchat.llms.transport")


class ModelTransport(Protocol):
    """
    Provider seam used by ``ModelGateway``.

    ``open_stream`` establishes the generation call. Exceptions raised while
    awaiting it are treated as failures to open (and may be retried);
    exceptions raised while iterating the returned stream are mid-stream
    failures.
    """

    async def open_stream(
        self, request: ModelRequest
    ) -> AsyncIterator[TransportStreamEvent]: ...


def message_to_chat_completions(message: Message) -> list[dict[str, Any]]:
    """Map one canonical message to chat-completions message dicts."""
    if isinstance(message.content, str):
        return [{"role": message.role, "content": message.content}]

    texts: list[str] = []
    tool_calls: list[dict[str, Any]] = []
    tool_messages: list[dict[str, Any]] = []
    for part in message.content:
        kind = part["type"]
        if kind == "text":
            texts.append(part["text"])
        elif kind == "tool_use":
            tool_calls.append(
                {
                    "id": part["id"],
                    "type": "function",
                    "function": {
                        "name": part["name"],
                        "arguments": json.dumps(part["input"], ensure_ascii=True),
                    },
                }
            )
        elif kind == "tool_result":
            tool_messages.append(
                {
                    "role": "tool",
                    "tool_call_id": part["tool_use_id"],
                    "name": part["name"],
                    "content": part["content"],
                }
            )

    out: list[dict[str, Any]] = []
    if message.role == "assistant":
        row: dict[str, Any] = {"role": "assistant", "content": "".join(texts) or None}
        if tool_calls:
            row["tool_calls"] = tool_calls
        out.append(row)
        return out

    out.extend(tool_messages)
    if texts:
        out.append({"role": "user", "content": "".join(texts)})
    return out


def to_chat_completions(messages: list[Message]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for message in messages:
        rows.extend(message_to_chat_completions(message))
    return rows


def chunk_to_events(chunk: Any) -> list[TransportStreamEvent]:
    """Normalize one streamed chat-completions chunk."""
    choices = getattr(chunk, "choices", None)
    if not choices:
        return []
    choice = choices[0]
    delta = getattr(choice, "delta", None)
    events: list[TransportStreamEvent] = []
    if delta is not None:
        content = getattr(delta, "content", None)
        if content:
            events.append(StreamTextDeltaEvent(delta=content))
        for position, tc in enumerate(getattr(delta, "tool_calls", None) or []):
            func = getattr(tc, "function", None)
            index = getattr(tc, "index", None)
            events.append(
                StreamToolCallDeltaEvent(
                    index=index if isinstance(index, int) else position,
                    call_id=getattr(tc, "id", None),
                    tool_name=getattr(func, "name", None) if func is not None else None,
                    arguments_delta=(getattr(func, "arguments", None) or "")
                    if func is not None
                    else "",
                )
            )
    finish_reason = getattr(choice, "finish_reason", None)
    if finish_reason:
        events.append(StreamMessageStopEvent(finish_reason=finish_reason))
    return events


class LiteLLMTransport:
    """Streaming transport backed by LiteLLM."""

    def __init__(self, settings: LLMSettings) -> None:
        self._settings = settings

    def _payload(self, request: ModelRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": to_chat_completions(request.messages),
            "stream": True,
        }
        # An empty tools block is rejected by some providers.
        if request.tools:
            payload["tools"] = request.tools
            payload["tool_choice"] = "auto"
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if self._settings.api_key:
            payload["api_key"] = self._settings.api_key
        if self._settings.api_base_url:
            payload["api_base"] = self._settings.api_base_url
        return payload

    async def open_stream(
        self, request: ModelRequest
    ) -> AsyncIterator[TransportStreamEvent]:
        response = await litellm.acompletion(**self._payload(request))
        return self._iterate(response)

    async def _iterate(self, response: Any) -> AsyncIterator[TransportStreamEvent]:
        try:
            async for chunk in response:
                for event in chunk_to_events(chunk):
                    yield event
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except (RuntimeError, AttributeError):
                    logger.debug("Stream close error", exc_info=True)
