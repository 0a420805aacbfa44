"""Serializers for exported transcripts."""

from __future__ import annotations

import html
import json
import re
from datetime import datetime
from typing import Callable

from transcript_engine.core.models import Message, ToolCallRecord
from transcript_engine.core.types import ExportFormat, MessageType, ToolCallStatus
from transcript_engine.export.models import ExportData, ExportOptions, ToolCallData, parse_tool_calls

MESSAGE_LABELS = {
    MessageType.SYSTEM: "System Prompt",
    MessageType.USER: "User",
    MessageType.RESPONSE: "Assistant",
    MessageType.REASONING: "Reasoning",
    MessageType.TOOL_RESULT: "Tool Result",
    MessageType.ERROR: "Error",
}

EMPTY_CONTENT = "(no content)"

_CODE_FENCE = re.compile(r"```(\w*)\n([\s\S]*?)```")
_INLINE_CODE = re.compile(r"`([^`]+)`")


def message_label(message_type: MessageType) -> str:
    return MESSAGE_LABELS.get(message_type, str(message_type))


def format_date(value: datetime | None) -> str:
    if value is None:
        return "unknown"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def pretty_json(value: object) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def pretty_result(result: str) -> str:
    """Pretty-print a tool result when it is JSON, otherwise return it as-is."""
    try:
        return pretty_json(json.loads(result))
    except (json.JSONDecodeError, TypeError):
        return result


def _tool_params(message: Message, options: ExportOptions) -> list[ToolCallData]:
    if not options.include_tool_params:
        return []
    return parse_tool_calls(message.tool_calls_json)


def _tool_results(
    message: Message, options: ExportOptions, results: dict[int, list[ToolCallRecord]]
) -> list[ToolCallRecord]:
    if not options.include_tool_results:
        return []
    return results.get(message.id, [])


# ── Markdown ────────────────────────────────────────────────────


def format_markdown(
    data: ExportData, options: ExportOptions, results: dict[int, list[ToolCallRecord]]
) -> str:
    info = data.conversation
    lines: list[str] = [f"# {info.name}\n"]
    if info.assistant_name:
        lines.append(f"**Assistant**: {info.assistant_name}")
    lines.append(f"**Created**: {format_date(info.created_time)}")
    lines.append("")
    lines.append("---\n")

    for message in data.messages:
        lines.append(f"## {message_label(message.message_type)}\n")
        lines.append(message.content.strip() or EMPTY_CONTENT)
        lines.append("")

        params = _tool_params(message, options)
        if params:
            lines.append("### Tool Calls\n")
            for call in params:
                lines.append(f"**{call.display_name}**:")
                lines.append("```json")
                lines.append(pretty_json(call.fn_arguments))
                lines.append("```\n")

        related = _tool_results(message, options, results)
        if related:
            lines.append("### Tool Results\n")
            for record in related:
                lines.append(f"**{record.tool_name}** ({record.status}):")
                if record.status == ToolCallStatus.SUCCESS and record.result:
                    lines.append("```json")
                    lines.append(pretty_result(record.result))
                    lines.append("```")
                elif record.status == ToolCallStatus.FAILED and record.error:
                    lines.append(f"\nError: {record.error}")
                lines.append("")

        lines.append("---\n")

    return "\n".join(lines)


# ── HTML ────────────────────────────────────────────────────────

_HTML_STYLE = """
        body { font-family: -apple-system, "Segoe UI", Roboto, Arial, sans-serif; line-height: 1.6;
               color: #333; max-width: 800px; margin: 0 auto; padding: 20px; }
        .meta { color: #666; font-size: 14px; margin-bottom: 20px; }
        .message { margin-bottom: 24px; padding: 16px; border-radius: 8px; background: #f5f5f5; }
        .message-header { font-weight: 600; margin-bottom: 8px; }
        .message-content { white-space: pre-wrap; word-break: break-word; }
        pre { background: #1e1e1e; color: #d4d4d4; padding: 12px; border-radius: 4px; overflow-x: auto; }
        .tool-call { margin-top: 12px; padding: 8px; background: #e8f4f8; border-left: 3px solid #007acc; }
        .tool-result { margin-top: 12px; padding: 8px; background: #f0f8f0; border-left: 3px solid #28a745; }
        .section-label { font-size: 12px; font-weight: 600; color: #666; }
        .error { color: #d32f2f; }
"""


def content_to_html(content: str) -> str:
    """Escape *content* and turn code fences and inline code into HTML."""
    text = html.escape(content)
    text = _CODE_FENCE.sub(
        lambda m: f'<pre><code class="language-{m.group(1)}">{m.group(2)}</code></pre>', text
    )
    text = _INLINE_CODE.sub(r"<code>\1</code>", text)
    return text


def format_html(
    data: ExportData, options: ExportOptions, results: dict[int, list[ToolCallRecord]]
) -> str:
    info = data.conversation
    title = html.escape(info.name)
    meta = f"Created: {format_date(info.created_time)}"
    if info.assistant_name:
        meta = f"Assistant: {html.escape(info.assistant_name)} | {meta}"

    parts: list[str] = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '    <meta charset="UTF-8">',
        f"    <title>{title}</title>",
        f"    <style>{_HTML_STYLE}    </style>",
        "</head>",
        "<body>",
        f"    <h1>{title}</h1>",
        f'    <div class="meta">{meta}</div>',
    ]

    for message in data.messages:
        parts.append('    <div class="message">')
        parts.append(f'        <div class="message-header">{html.escape(message_label(message.message_type))}</div>')
        parts.append(
            f'        <div class="message-content">{content_to_html(message.content.strip() or EMPTY_CONTENT)}</div>'
        )
        for call in _tool_params(message, options):
            parts.append('        <div class="tool-call">')
            parts.append(f'            <div class="section-label">Tool call: {html.escape(call.display_name)}</div>')
            parts.append(f"            <pre><code>{html.escape(pretty_json(call.fn_arguments))}</code></pre>")
            parts.append("        </div>")
        for record in _tool_results(message, options, results):
            parts.append('        <div class="tool-result">')
            parts.append(
                f'            <div class="section-label">Tool result: {html.escape(record.tool_name)} ({record.status})</div>'
            )
            if record.status == ToolCallStatus.SUCCESS and record.result:
                parts.append(f"            <pre><code>{html.escape(pretty_result(record.result))}</code></pre>")
            elif record.status == ToolCallStatus.FAILED and record.error:
                parts.append(f'            <div class="error">Error: {html.escape(record.error)}</div>')
            parts.append("        </div>")
        parts.append("    </div>")

    parts.extend(["</body>", "</html>", ""])
    return "\n".join(parts)


# ── Plain text ──────────────────────────────────────────────────


def format_text(
    data: ExportData, options: ExportOptions, results: dict[int, list[ToolCallRecord]]
) -> str:
    info = data.conversation
    lines: list[str] = [info.name, "=" * len(info.name)]
    if info.assistant_name:
        lines.append(f"Assistant: {info.assistant_name}")
    lines.append(f"Created: {format_date(info.created_time)}")
    lines.append("")

    for message in data.messages:
        lines.append(f"[{message_label(message.message_type)}]")
        lines.append(message.content.strip() or EMPTY_CONTENT)
        for call in _tool_params(message, options):
            lines.append(f"  -> tool call {call.display_name}: {json.dumps(call.fn_arguments, ensure_ascii=False)}")
        for record in _tool_results(message, options, results):
            outcome = record.result if record.status == ToolCallStatus.SUCCESS else record.error
            suffix = f": {outcome}" if outcome else ""
            lines.append(f"  <- {record.tool_name} ({record.status}){suffix}")
        lines.append("")

    return "\n".join(lines)


Formatter = Callable[[ExportData, ExportOptions, dict[int, list[ToolCallRecord]]], str]

FORMATTERS: dict[ExportFormat, Formatter] = {
    ExportFormat.MARKDOWN: format_markdown,
    ExportFormat.HTML: format_html,
    ExportFormat.TEXT: format_text,
}
