"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Conversation persistence contracts and the in-memory implementation.
"""

from __future__ import annotations

import copy
import threading
from typing import Protocol

from .types import ChatError, ChatTurn, Conversation, DEFAULT_TITLE


class ConversationNotFound(ChatError, KeyError):
    """Raised when a conversation id is not present in the store."""


class ConversationStore(Protocol):
    """
    Persistence contract used by the conversation loop.

    Implementations store snapshots: callers may keep mutating the objects
    they passed in without affecting what was persisted.
    """

    def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation: ...

    def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    def list_conversations(self) -> list[Conversation]: ...

    def delete_conversation(self, conversation_id: str) -> None: ...

    def set_title(self, conversation_id: str, title: str) -> None: ...

    def save_turn(self, conversation_id: str, turn: ChatTurn) -> None: ...

    def clear_turns(self, conversation_id: str) -> None: ...

    def get_active_id(self) -> str | None: ...

    def set_active_id(self, conversation_id: str | None) -> None: ...


class InMemoryConversationStore:
    """Thread-safe conversation store kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conversations: dict[str, Conversation] = {}
        self._active_id: str | None = None

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        conversation = Conversation(title=title)
        with self._lock:
            self._conversations[conversation.id] = conversation
            return copy.deepcopy(conversation)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return copy.deepcopy(conversation) if conversation is not None else None

    def list_conversations(self) -> list[Conversation]:
        with self._lock:
            rows = sorted(
                self._conversations.values(), key=lambda row: row.updated_at, reverse=True
            )
            return copy.deepcopy(rows)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._conversations.pop(conversation_id, None)
            if self._active_id == conversation_id:
                self._active_id = None

    def set_title(self, conversation_id: str, title: str) -> None:
        with self._lock:
            conversation = self._require(conversation_id)
            conversation.title = title
            conversation.touch()

    def save_turn(self, conversation_id: str, turn: ChatTurn) -> None:
        """Insert the turn, or replace the stored turn with the same id."""
        snapshot = copy.deepcopy(turn)
        with self._lock:
            conversation = self._require(conversation_id)
            for index, existing in enumerate(conversation.turns):
                if existing.id == turn.id:
                    conversation.turns[index] = snapshot
                    break
            else:
                conversation.turns.append(snapshot)
            conversation.touch()

    def clear_turns(self, conversation_id: str) -> None:
        with self._lock:
            conversation = self._require(conversation_id)
            conversation.turns.clear()
            conversation.title = DEFAULT_TITLE
            conversation.touch()

    def get_active_id(self) -> str | None:
        with self._lock:
            return self._active_id

    def set_active_id(self, conversation_id: str | None) -> None:
        with self._lock:
            if conversation_id is not None:
                self._require(conversation_id)
            self._active_id = conversation_id
