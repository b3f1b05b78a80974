"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Conversation layer: entities, persistence and the tool-calling loop.
"""

from .loop import ConversationLoop, LoopEvent, LoopState, ToolRegistry
from .settings import ChatSettings
from .store import ConversationNotFound, ConversationStore, InMemoryConversationStore
from .types import (
    DENIED_RESULT,
    ChatError,
    ChatTurn,
    Conversation,
    InvalidToolCallTransition,
    ToolCallInfo,
    generate_title,
)

__all__ = [
    "DENIED_RESULT",
    "ChatError",
    "ChatSettings",
    "ChatTurn",
    "Conversation",
    "ConversationLoop",
    "ConversationNotFound",
    "ConversationStore",
    "InMemoryConversationStore",
    "InvalidToolCallTransition",
    "LoopEvent",
    "LoopState",
    "ToolCallInfo",
    "ToolRegistry",
    "generate_title",
]
