"""Typed conversation events and decoding from the ``{type, data}`` wire shape."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ValidationError

from transcript_engine.core.models import StreamEvent, ToolCallRecord, UtcDatetime
from transcript_engine.core.types import MessageType


class EventDecodeError(ValueError):
    """A wire payload could not be turned into a conversation event."""


@dataclass(frozen=True, slots=True)
class MessageAdd:
    conversation_id: int
    message_id: int
    message_type: MessageType
    started_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class MessageUpdate:
    conversation_id: int
    message_id: int
    event: StreamEvent


@dataclass(frozen=True, slots=True)
class ToolCallUpdate:
    conversation_id: int
    record: ToolCallRecord


@dataclass(frozen=True, slots=True)
class StreamComplete:
    conversation_id: int


@dataclass(frozen=True, slots=True)
class ConversationCancel:
    conversation_id: int


@dataclass(frozen=True, slots=True)
class GroupMerge:
    """A regeneration created *new_group_id* as a new version of *original_group_id*."""

    conversation_id: int
    original_group_id: str
    new_group_id: str
    first_message_id: Optional[int] = None


ConversationEvent = Union[
    MessageAdd, MessageUpdate, ToolCallUpdate, StreamComplete, ConversationCancel, GroupMerge
]


class _MessageAddData(BaseModel):
    conversation_id: int = 0
    message_id: int
    message_type: MessageType
    started_at: Optional[UtcDatetime] = None


class _MessageUpdateData(StreamEvent):
    conversation_id: int = 0
    message_id: int


class _ConversationData(BaseModel):
    conversation_id: int = 0


class _GroupMergeData(BaseModel):
    conversation_id: int = 0
    original_group_id: str
    new_group_id: str
    first_message_id: Optional[int] = None


def _decode_message_add(data: dict[str, Any]) -> ConversationEvent:
    parsed = _MessageAddData.model_validate(data)
    return MessageAdd(parsed.conversation_id, parsed.message_id, parsed.message_type, parsed.started_at)


def _decode_message_update(data: dict[str, Any]) -> ConversationEvent:
    parsed = _MessageUpdateData.model_validate(data)
    event = StreamEvent.model_validate(
        parsed.model_dump(exclude={"conversation_id", "message_id"}, exclude_unset=True)
    )
    return MessageUpdate(parsed.conversation_id, parsed.message_id, event)


def _decode_tool_call_update(data: dict[str, Any]) -> ConversationEvent:
    record = ToolCallRecord.model_validate(data)
    return ToolCallUpdate(record.conversation_id, record)


def _decode_stream_complete(data: dict[str, Any]) -> ConversationEvent:
    return StreamComplete(_ConversationData.model_validate(data).conversation_id)


def _decode_conversation_cancel(data: dict[str, Any]) -> ConversationEvent:
    return ConversationCancel(_ConversationData.model_validate(data).conversation_id)


def _decode_group_merge(data: dict[str, Any]) -> ConversationEvent:
    parsed = _GroupMergeData.model_validate(data)
    return GroupMerge(
        parsed.conversation_id, parsed.original_group_id, parsed.new_group_id, parsed.first_message_id
    )


_DECODERS = {
    "message_add": _decode_message_add,
    "message_update": _decode_message_update,
    "mcp_tool_call_update": _decode_tool_call_update,
    "stream_complete": _decode_stream_complete,
    "conversation_cancel": _decode_conversation_cancel,
    "group_merge": _decode_group_merge,
}


def decode_event(payload: dict[str, Any]) -> ConversationEvent:
    """Decode one ``{"type": ..., "data": {...}}`` payload."""
    event_type = payload.get("type")
    decoder = _DECODERS.get(event_type)  # type: ignore[arg-type]
    if decoder is None:
        raise EventDecodeError(f"Unknown conversation event type: {event_type!r}")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise EventDecodeError(f"Event '{event_type}' data must be an object")
    try:
        return decoder(data)
    except ValidationError as e:
        raise EventDecodeError(f"Invalid '{event_type}' event: {e}") from e
