"""Loading of JSON conversation dumps (messages, tool calls, recorded events)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from transcript_engine.core.models import Message, ToolCallRecord
from transcript_engine.export.models import ConversationInfo


class ConversationDump(BaseModel):
    conversation: ConversationInfo = Field(default_factory=ConversationInfo)
    messages: list[Message] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(default_factory=list)


def load_dump(path: str | Path) -> ConversationDump:
    """Read and validate a dump file.

    A bare JSON array is accepted as a message list.
    """
    dump_file = Path(path)
    if not dump_file.exists():
        raise FileNotFoundError(f"Conversation dump not found: {dump_file}")

    data = json.loads(dump_file.read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"messages": data}
    return ConversationDump.model_validate(data)
