from __future__ import annotations

import asyncio

import pytest

from transcript_engine.app import TranscriptEngine
from transcript_engine.config import AppConfig
from transcript_engine.core.channel import EventChannel
from transcript_engine.core.events import MessageAdd, MessageUpdate, StreamComplete
from transcript_engine.core.models import StreamEvent
from transcript_engine.core.session import SessionRegistry
from transcript_engine.core.types import MessageType
from tests.factories import at, make_message


def test_channel_applies_events_in_order(clock):
    async def scenario():
        registry = SessionRegistry(clock=clock)
        store = registry.open(1)
        channel = EventChannel(maxsize=4)
        pump = asyncio.create_task(channel.run(registry))

        await channel.publish(MessageAdd(1, 2, MessageType.RESPONSE))
        for text in ("Hel", "Hello", "Hello world"):
            await channel.publish(MessageUpdate(1, 2, StreamEvent(content=text)))
        await channel.publish(StreamComplete(1))
        await channel.close()
        applied = await pump
        return store, applied

    store, applied = asyncio.run(scenario())

    assert applied == 5
    assert store.streams.get_display_content(2).content == "Hello world"
    assert store.streams.is_streaming(2) is False


def test_events_for_closed_conversation_are_dropped(clock):
    async def scenario():
        registry = SessionRegistry(clock=clock)
        registry.open(1)
        channel = EventChannel()
        pump = asyncio.create_task(channel.run(registry))
        await channel.publish(MessageAdd(2, 5, MessageType.RESPONSE))
        await channel.publish(MessageAdd(1, 6, MessageType.RESPONSE))
        await channel.close()
        return registry, await pump

    registry, applied = asyncio.run(scenario())

    assert applied == 1
    assert registry.get(2) is None
    assert registry.get(1).streams.in_flight() == [6]


def test_unknown_message_update_is_not_counted(clock):
    async def scenario():
        registry = SessionRegistry(clock=clock)
        registry.open(1)
        channel = EventChannel()
        pump = asyncio.create_task(channel.run(registry))
        await channel.publish(MessageUpdate(1, 99, StreamEvent(content="nobody")))
        await channel.close()
        return await pump

    assert asyncio.run(scenario()) == 0


def test_closed_channel_rejects_publish():
    async def scenario():
        channel = EventChannel()
        await channel.close()
        with pytest.raises(RuntimeError):
            await channel.publish(StreamComplete(1))
        with pytest.raises(RuntimeError):
            channel.publish_nowait(StreamComplete(1))

    asyncio.run(scenario())


def test_publish_nowait_raises_when_full():
    async def scenario():
        channel = EventChannel(maxsize=1)
        channel.publish_nowait(StreamComplete(1))
        assert channel.pending() == 1
        with pytest.raises(asyncio.QueueFull):
            channel.publish_nowait(StreamComplete(1))

    asyncio.run(scenario())


def test_engine_replays_payloads_into_transcript(clock):
    payloads = [
        {
            "type": "message_add",
            "data": {"conversation_id": 1, "message_id": 2, "message_type": "response"},
        },
        {
            "type": "message_update",
            "data": {"conversation_id": 1, "message_id": 2, "content": "partial"},
        },
        {
            "type": "mcp_tool_call_update",
            "data": {"conversation_id": 1, "call_id": 1, "message_id": 2, "status": "executing"},
        },
    ]
    messages = [make_message(1, 0, message_type=MessageType.USER, content="go")]

    async def scenario():
        engine = TranscriptEngine(AppConfig(), clock=clock)
        engine.open_conversation(1)
        await engine.start()
        for payload in payloads:
            await engine.publish_payload(payload)
        await engine.drain()
        entries = engine.transcript(1, messages, now=at(2))
        live_calls = engine.registry.get(1).tool_calls.active_call_ids()
        await engine.stop()
        return engine, entries, live_calls

    engine, entries, live_calls = asyncio.run(scenario())

    assert [e.message.id for e in entries] == [1, 2]
    assert entries[1].resolved_content == "partial"
    assert entries[1].streaming.is_streaming is True
    assert entries[1].streaming.thinking_elapsed_ms == 2000
    assert live_calls == [1]
    assert engine.registry.ids() == []
