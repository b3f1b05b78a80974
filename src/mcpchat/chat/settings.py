"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Conversation loop settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ChatSettings:
    """Limits for the tool-calling loop and MCP connection setup."""

    max_tool_rounds: int = 5
    connect_timeout_s: float = 30.0

    @staticmethod
    def from_env() -> "ChatSettings":
        return ChatSettings(
            max_tool_rounds=int(os.getenv("MCPCHAT_MAX_TOOL_ROUNDS", "5")),
            connect_timeout_s=float(os.getenv("MCPCHAT_CONNECT_TIMEOUT_S", "30")),
        )
