"""Plain-data records exchanged with the message store and event feeds."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, field_validator

from transcript_engine.core.types import MessageType, ToolCallStatus


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Naive timestamps coming from the store are UTC.
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class Message(BaseModel):
    """A conversation message as supplied by the store.

    Only ``content`` and the timing fields change, and only while the
    message is streaming.
    """

    id: int
    conversation_id: int = 0
    message_type: MessageType
    content: str = ""
    created_time: UtcDatetime
    start_time: Optional[UtcDatetime] = None
    finish_time: Optional[UtcDatetime] = None
    first_token_time: Optional[UtcDatetime] = None
    generation_group_id: Optional[str] = None
    parent_group_id: Optional[str] = None
    llm_model_id: Optional[int] = None
    token_count: int = 0
    input_token_count: int = 0
    output_token_count: int = 0
    tool_calls_json: Optional[str] = None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_time, self.id)

    @property
    def is_in_progress(self) -> bool:
        return self.start_time is not None and self.finish_time is None


class ToolCallRecord(BaseModel):
    """Lifecycle state of one tool invocation, keyed by ``call_id``."""

    call_id: int
    conversation_id: int = 0
    message_id: Optional[int] = None
    server_name: str = ""
    tool_name: str = ""
    parameters: str = "{}"
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    created_time: Optional[UtcDatetime] = None
    started_time: Optional[UtcDatetime] = None
    finished_time: Optional[UtcDatetime] = None


class StreamEvent(BaseModel):
    """One streaming update for a message; never persisted."""

    message_type: Optional[MessageType] = None
    content: str = ""
    is_done: bool = False
    duration_ms: Optional[int] = None
    ttft_ms: Optional[int] = None
    tps: Optional[float] = None
    output_token_count: Optional[int] = None
    end_time: Optional[UtcDatetime] = None


class ToolCallMarker(BaseModel):
    """Payload of an inline ``<!-- MCP_TOOL_CALL:{...} -->`` marker."""

    server_name: str = ""
    tool_name: str = ""
    parameters: str = "{}"
    call_id: Optional[int] = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _serialize_parameters(cls, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        if value is None:
            return "{}"
        return value
