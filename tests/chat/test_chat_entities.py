from __future__ import annotations

import pytest

from mcpchat.chat import (
    DENIED_RESULT,
    ChatTurn,
    ConversationNotFound,
    InMemoryConversationStore,
    InvalidToolCallTransition,
    ToolCallInfo,
    generate_title,
)
from mcpchat.mcp import InlineImage, ToolCallResult


def _call() -> ToolCallInfo:
    return ToolCallInfo(
        tool_call_id="c1", tool_name="read_dir", server_id="fs", server_name="Files"
    )


def test_tool_call_approval_path():
    call = _call()
    call.approve()
    call.complete(ToolCallResult(content="a.txt"))

    assert call.status == "completed"
    assert call.result == "a.txt"
    assert call.is_terminal


def test_tool_call_error_result_marks_error():
    call = _call()
    call.approve()
    call.complete(ToolCallResult(content="boom", is_error=True))

    assert call.status == "error"
    assert call.result == "boom"


def test_denied_call_gets_synthetic_result():
    call = _call()
    call.deny()

    assert call.status == "denied"
    assert call.result == DENIED_RESULT
    assert call.is_resolved


@pytest.mark.parametrize("setup", ["deny", "complete"])
def test_terminal_calls_cannot_move(setup):
    call = _call()
    if setup == "deny":
        call.deny()
    else:
        call.approve()
        call.complete(ToolCallResult(content="ok"))

    with pytest.raises(InvalidToolCallTransition):
        call.approve()
    with pytest.raises(InvalidToolCallTransition):
        call.deny()


def test_pending_call_cannot_complete_without_approval():
    with pytest.raises(InvalidToolCallTransition, match="pending to completed"):
        _call().complete(ToolCallResult(content="ok"))


def test_turn_serializes_camel_case_and_round_trips():
    call = _call()
    turn = ChatTurn(
        role="assistant",
        content="Checking.",
        tool_calls=[call],
        images=[InlineImage(mime_type="image/png", data="iVBOR")],
    )

    payload = turn.to_dict()
    restored = ChatTurn.from_dict(payload)

    assert payload["toolCalls"][0]["toolCallId"] == "c1"
    assert payload["toolCalls"][0]["serverName"] == "Files"
    assert payload["images"] == [{"mimeType": "image/png", "data": "iVBOR"}]
    assert restored.id == turn.id
    assert restored.tool_calls[0].tool_name == "read_dir"
    assert "toolCalls" not in ChatTurn(role="user", content="hi").to_dict()


def test_generate_title_truncates_long_messages():
    assert generate_title("  list files  ") == "list files"
    assert generate_title("x" * 31) == "x" * 30 + "..."
    assert generate_title("x" * 30) == "x" * 30
    assert generate_title("   ") == "New chat"


def test_store_saves_snapshots_and_replaces_by_id():
    store = InMemoryConversationStore()
    conversation = store.create_conversation()
    turn = ChatTurn(role="assistant", content="Hel")

    store.save_turn(conversation.id, turn)
    turn.content = "Hello"
    assert store.get_conversation(conversation.id).turns[0].content == "Hel"

    store.save_turn(conversation.id, turn)
    turns = store.get_conversation(conversation.id).turns
    assert [t.content for t in turns] == ["Hello"]


def test_store_clear_and_active_pointer():
    store = InMemoryConversationStore()
    conversation = store.create_conversation()
    store.set_title(conversation.id, "Files")
    store.save_turn(conversation.id, ChatTurn(role="user", content="hi"))
    store.set_active_id(conversation.id)

    store.clear_turns(conversation.id)
    cleared = store.get_conversation(conversation.id)
    assert cleared.turns == []
    assert cleared.title == "New chat"
    assert store.get_active_id() == conversation.id

    store.delete_conversation(conversation.id)
    assert store.get_active_id() is None
    with pytest.raises(ConversationNotFound):
        store.set_active_id(conversation.id)
