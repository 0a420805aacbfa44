"""Export inputs: conversation metadata, option toggles, parsed tool-call params."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from transcript_engine.config import ExportConfig
from transcript_engine.core.models import Message, ToolCallRecord, UtcDatetime


class ConversationInfo(BaseModel):
    id: int = 0
    name: str = "conversation"
    assistant_name: str = ""
    created_time: Optional[UtcDatetime] = None


@dataclass(frozen=True, slots=True)
class ExportOptions:
    include_system_prompt: bool = True
    include_reasoning: bool = True
    include_tool_params: bool = True
    include_tool_results: bool = True

    @classmethod
    def from_config(cls, config: ExportConfig) -> ExportOptions:
        return cls(
            include_system_prompt=config.include_system_prompt,
            include_reasoning=config.include_reasoning,
            include_tool_params=config.include_tool_params,
            include_tool_results=config.include_tool_results,
        )


class ToolCallData(BaseModel):
    """One requested call inside a message's ``tool_calls_json``."""

    fn_name: str
    fn_arguments: Any = None

    @property
    def display_name(self) -> str:
        # fn_name is "server__tool"; the tool part may itself contain "__".
        _, sep, tool = self.fn_name.partition("__")
        return tool if sep else self.fn_name


def parse_tool_calls(tool_calls_json: str | None) -> list[ToolCallData]:
    """Parse ``tool_calls_json``; unreadable payloads yield no calls."""
    if not tool_calls_json:
        return []
    try:
        raw = json.loads(tool_calls_json)
        if not isinstance(raw, list):
            return []
        return [ToolCallData.model_validate(item) for item in raw]
    except (json.JSONDecodeError, ValidationError):
        return []


@dataclass
class ExportData:
    conversation: ConversationInfo
    messages: list[Message]
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
