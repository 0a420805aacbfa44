from __future__ import annotations

import json

import pytest

from transcript_engine.config import AppConfig
from transcript_engine.core.branch import DanglingSupersessionError, VersionInfo
from transcript_engine.core.events import (
    ConversationCancel,
    GroupMerge,
    MessageAdd,
    MessageUpdate,
    StreamComplete,
    ToolCallUpdate,
)
from transcript_engine.core.models import StreamEvent, ToolCallRecord
from transcript_engine.core.session import SessionRegistry
from transcript_engine.core.store import CorrelationStore, StoreDisposedError
from transcript_engine.core.types import MessageType, ToolCallStatus
from tests.factories import at, make_message


@pytest.fixture
def store(clock):
    return CorrelationStore.create(1, clock=clock)


def streaming(message_id, seconds, **fields):
    return make_message(message_id, seconds, content=" ", start_time=at(seconds), **fields)


def test_transcript_resolves_branch_and_overlays_stream(store):
    messages = [
        make_message(1, 0, message_type=MessageType.USER, content="hi"),
        make_message(2, 1, group="g1", content="old answer", finish_time=at(2)),
        streaming(3, 3, group="g1b", parent="g1"),
    ]
    store.transcript(messages)
    assert store.apply(MessageUpdate(1, 3, StreamEvent(content="new answer"))) is True

    entries = store.transcript(messages)

    assert [e.message.id for e in entries] == [1, 3]
    assert entries[1].resolved_content == "new answer"
    assert entries[1].streaming.is_streaming is True
    assert entries[0].streaming.is_streaming is False


def test_events_for_superseded_message_are_dropped(store):
    messages = [
        make_message(1, 0, message_type=MessageType.USER),
        streaming(2, 1, group="g1"),
    ]
    store.transcript(messages)
    regenerated = messages + [streaming(3, 2, group="g1b", parent="g1")]
    store.transcript(regenerated)

    assert store.apply(MessageUpdate(1, 2, StreamEvent(content="late"))) is False
    assert store.streams.get(2) is None


def test_announced_message_appears_before_store_catches_up(store, clock):
    messages = [make_message(1, 0, message_type=MessageType.USER, content="question")]
    store.apply(MessageAdd(1, 2, MessageType.REASONING, at(1)))
    store.apply(MessageUpdate(1, 2, StreamEvent(content="pondering")))
    clock.advance(4)

    entries = store.transcript(messages)

    assert [e.message.id for e in entries] == [1, 2]
    placeholder = entries[1]
    assert placeholder.message.message_type == MessageType.REASONING
    assert placeholder.resolved_content == "pondering"
    assert placeholder.streaming.thinking_elapsed_ms == 3000

    stored = messages + [streaming(2, 1, message_type=MessageType.REASONING)]
    entries = store.transcript(stored)
    assert [e.message.id for e in entries] == [1, 2]
    assert entries[1].resolved_content == "pondering"


def test_tool_markers_are_projected(store):
    marker = '<!-- MCP_TOOL_CALL:{"server_name": "fs", "tool_name": "ls", "call_id": 4} -->'
    messages = [make_message(1, 0, content=f"Listing {marker}", finish_time=at(1))]
    store.apply(ToolCallUpdate(1, ToolCallRecord(call_id=4, status=ToolCallStatus.SUCCESS, result="a b")))

    entries = store.transcript(messages)

    assert entries[0].resolved_content == "Listing [tool: fs/ls] success\na b"
    assert entries[0].message.content == f"Listing {marker}"


@pytest.mark.parametrize("terminal", [StreamComplete(1), ConversationCancel(1)])
def test_stream_end_terminates_in_flight(store, terminal):
    store.transcript([streaming(1, 0), streaming(2, 1)])

    store.apply(terminal)

    assert store.streams.in_flight() == []
    assert store.apply(MessageUpdate(1, 1, StreamEvent(content="after end"))) is False


def test_disposed_store_rejects_use(store):
    store.apply(MessageAdd(1, 9, MessageType.RESPONSE))
    store.dispose()
    store.dispose()

    assert store.disposed
    with pytest.raises(StoreDisposedError):
        store.apply(StreamComplete(1))
    with pytest.raises(StoreDisposedError):
        store.transcript([])
    with pytest.raises(StoreDisposedError):
        _ = store.tool_calls


def test_reopened_conversation_starts_clean(clock):
    registry = SessionRegistry(clock=clock)
    first = registry.open(1)
    first.apply(MessageAdd(1, 5, MessageType.RESPONSE))
    first.apply(ToolCallUpdate(1, ToolCallRecord(call_id=1)))

    second = registry.reopen(1)

    assert first.disposed
    assert second is not first
    assert second.streams.in_flight() == []
    assert second.tool_calls.all() == []


def test_registry_open_is_idempotent_and_close_reports():
    registry = SessionRegistry()
    assert registry.open(1) is registry.open(1)
    registry.open(2)
    assert registry.ids() == [1, 2]

    assert registry.close(1) is True
    assert registry.close(1) is False
    assert registry.get(1) is None

    store = registry.get(2)
    registry.close_all()
    assert registry.ids() == []
    assert store.disposed


def test_strict_config_flows_into_store():
    store = CorrelationStore(1, AppConfig.model_validate({"branch": {"strict_supersession": True}}))
    with pytest.raises(DanglingSupersessionError):
        store.resolve([make_message(1, 0, group="g", parent="ghost")])


def test_projection_keeps_tool_calls_json(store):
    calls = json.dumps([{"fn_name": "fs__read", "fn_arguments": {"p": 1}}])
    message = make_message(1, 0, tool_calls_json=calls, finish_time=at(1))
    entries = store.transcript([message])
    assert entries[0].message.tool_calls_json == calls


def test_regenerated_entry_carries_version(store):
    messages = [
        make_message(1, 0, message_type=MessageType.USER, content="hi"),
        make_message(2, 1, group="g1", finish_time=at(2)),
        make_message(3, 3, group="g1b", parent="g1", finish_time=at(4)),
    ]

    entries = store.transcript(messages)

    assert entries[0].version is None
    assert entries[1].version == VersionInfo(2, 2, "g1")


def test_announced_regeneration_is_versioned_before_it_is_stored(store):
    messages = [
        make_message(1, 0, message_type=MessageType.USER, content="hi"),
        make_message(2, 1, group="g1", finish_time=at(2)),
    ]
    store.transcript(messages)
    assert store.apply(GroupMerge(1, "g1", "g1b", first_message_id=3)) is True
    store.apply(MessageAdd(1, 3, MessageType.RESPONSE, at(3)))

    entries = store.transcript(messages)

    placeholder = entries[-1]
    assert placeholder.message.id == 3
    assert placeholder.message.generation_group_id == "g1b"
    assert placeholder.message.parent_group_id == "g1"
    assert placeholder.version == VersionInfo(2, 2, "g1")
    assert entries[1].version == VersionInfo(1, 2, "g1")
