"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class MessageType(StrEnum):
    SYSTEM = "system"
    USER = "user"
    RESPONSE = "response"
    REASONING = "reasoning"
    TOOL_RESULT = "tool_result"
    ERROR = "error"

    @classmethod
    def _missing_(cls, value: object) -> MessageType | None:
        # Older stores label assistant replies "assistant" or "assistant_response".
        if value in ("assistant", "assistant_response"):
            return cls.RESPONSE
        return None


class ToolCallStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.SUCCESS, ToolCallStatus.FAILED)

    @property
    def rank(self) -> int:
        """Lifecycle position: pending < executing < success/failed."""
        if self.is_terminal:
            return 2
        return 1 if self is ToolCallStatus.EXECUTING else 0


class ExportFormat(StrEnum):
    MARKDOWN = "markdown"
    HTML = "html"
    TEXT = "text"

    @property
    def extension(self) -> str:
        return {"markdown": "md", "html": "html", "text": "txt"}[self.value]
