"""Projection of a resolved transcript into an export document."""

from __future__ import annotations

import re
from typing import Iterable

from transcript_engine.core.branch import BranchResolver
from transcript_engine.core.models import Message, ToolCallRecord
from transcript_engine.core.tool_calls import strip_markers
from transcript_engine.core.types import ExportFormat, MessageType
from transcript_engine.export.formatters import FORMATTERS
from transcript_engine.export.models import ConversationInfo, ExportData, ExportOptions
from transcript_engine.log import get_logger

logger = get_logger(__name__)

_ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')


def sanitize_filename(name: str) -> str:
    """Drop characters illegal in file names, underscore whitespace, cap at 200 chars."""
    cleaned = _ILLEGAL_FILENAME_CHARS.sub("", name)
    cleaned = re.sub(r"\s+", "_", cleaned.strip())
    return cleaned[:200] or "conversation"


def default_filename(info: ConversationInfo, fmt: ExportFormat) -> str:
    return f"{sanitize_filename(info.name)}.{fmt.extension}"


def filter_messages(messages: Iterable[Message], options: ExportOptions) -> list[Message]:
    """Apply the category toggles. User, assistant and error messages always stay."""
    kept: list[Message] = []
    for message in messages:
        if message.message_type == MessageType.SYSTEM and not options.include_system_prompt:
            continue
        if message.message_type == MessageType.REASONING and not options.include_reasoning:
            continue
        if message.message_type == MessageType.TOOL_RESULT and not options.include_tool_results:
            continue
        kept.append(message)
    return kept


def map_tool_calls_to_messages(tool_calls: Iterable[ToolCallRecord]) -> dict[int, list[ToolCallRecord]]:
    mapping: dict[int, list[ToolCallRecord]] = {}
    for call in tool_calls:
        if call.message_id is not None:
            mapping.setdefault(call.message_id, []).append(call)
    return mapping


class ExportProjector:
    """Filters, cleans and serializes an already-resolved transcript."""

    def __init__(self, options: ExportOptions | None = None):
        self._options = options or ExportOptions()

    def prepare(
        self,
        conversation: ConversationInfo,
        messages: Iterable[Message],
        tool_calls: Iterable[ToolCallRecord] = (),
        options: ExportOptions | None = None,
    ) -> ExportData:
        options = options or self._options
        cleaned = [
            m.model_copy(update={"content": strip_markers(m.content)})
            for m in filter_messages(messages, options)
        ]
        return ExportData(conversation=conversation, messages=cleaned, tool_calls=list(tool_calls))

    def export(
        self,
        conversation: ConversationInfo,
        messages: Iterable[Message],
        tool_calls: Iterable[ToolCallRecord] = (),
        fmt: ExportFormat = ExportFormat.MARKDOWN,
        options: ExportOptions | None = None,
    ) -> str:
        options = options or self._options
        data = self.prepare(conversation, messages, tool_calls, options)
        results = map_tool_calls_to_messages(data.tool_calls)
        document = FORMATTERS[fmt](data, options, results)
        logger.info(
            "conversation_exported",
            conversation_id=conversation.id,
            format=str(fmt),
            messages=len(data.messages),
        )
        return document


def export_conversation(
    conversation: ConversationInfo,
    messages: Iterable[Message],
    tool_calls: Iterable[ToolCallRecord] = (),
    fmt: ExportFormat = ExportFormat.MARKDOWN,
    options: ExportOptions | None = None,
    strict: bool = False,
) -> str:
    """Resolve the raw message set to its active branch, then export it."""
    active = BranchResolver(strict=strict).resolve(messages)
    return ExportProjector(options).export(conversation, active, tool_calls, fmt)
