"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/streaming.py.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field

from ..types import JSONObject, StreamToolCallDeltaEvent, ToolCall

logger = logging.getLogger("mcpchat.llms.streaming")


@dataclass(slots=True)
class _PartialCall:
    call_id: str | None = None
    tool_name: str = ""
    fragments: list[str] = field(default_factory=list)


def parse_arguments(raw: str) -> JSONObject:
    """Decode accumulated argument JSON; malformed or non-object input yields ``{}``."""
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %r", raw[:200])
        return {}
    if not isinstance(value, dict):
        logger.warning("Discarding non-object tool arguments: %r", raw[:200])
        return {}
    return value


class ToolCallAccumulator:
    """
    Assembles streamed tool-call fragments keyed by their stream index.

    Providers may send the id and name once and the argument JSON in many
    fragments; ``finish`` returns complete calls in index order.
    """

    def __init__(self) -> None:
        self._calls: dict[int, _PartialCall] = {}

    def add(self, event: StreamToolCallDeltaEvent) -> None:
        partial = self._calls.setdefault(event.index, _PartialCall())
        if event.call_id:
            partial.call_id = event.call_id
        if event.tool_name:
            partial.tool_name = event.tool_name
        if event.arguments_delta:
            partial.fragments.append(event.arguments_delta)

    def __bool__(self) -> bool:
        return bool(self._calls)

    def finish(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for index in sorted(self._calls):
            partial = self._calls[index]
            if not partial.tool_name:
                logger.warning("Dropping tool call %d without a name", index)
                continue
            calls.append(
                ToolCall(
                    id=partial.call_id or f"call_{uuid.uuid4().hex[:12]}",
                    tool_name=partial.tool_name,
                    arguments=parse_arguments("".join(partial.fragments)),
                )
            )
        return calls
