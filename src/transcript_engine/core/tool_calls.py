"""Tool-call lifecycle tracking and inline marker projection.

Assistant content references tool invocations through inline markers::

    <!-- MCP_TOOL_CALL:{"server_name": "fs", "tool_name": "read", "parameters": {...}, "call_id": 7} -->

Lifecycle updates for those calls arrive on a separate channel with no
ordering guarantee relative to the content. ``project`` therefore renders
from the live record when one is known and from the marker payload
otherwise, and can be re-run after every state change.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError

from transcript_engine.core.models import ToolCallMarker, ToolCallRecord
from transcript_engine.core.types import ToolCallStatus
from transcript_engine.log import get_logger

logger = get_logger(__name__)

MARKER_PATTERN = re.compile(r"<!-- MCP_TOOL_CALL:(.*?) -->")

_LIFECYCLE_FIELDS = ("status", "result", "error", "started_time", "finished_time")


@dataclass(frozen=True, slots=True)
class MarkerMatch:
    start: int
    end: int
    raw: str
    marker: Optional[ToolCallMarker]  # None when the payload did not parse


@dataclass(frozen=True, slots=True)
class TextSegment:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallView:
    server_name: str
    tool_name: str
    parameters: str
    call_id: Optional[int] = None
    status: Optional[ToolCallStatus] = None  # None: no lifecycle record yet
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.status is not None


ContentSegment = Union[TextSegment, ToolCallView]


@dataclass(frozen=True, slots=True)
class ToolCallSummary:
    total: int
    succeeded: int
    failed: int


def parse_markers(content: str) -> list[MarkerMatch]:
    """Find every complete marker in *content*.

    A marker cut off mid-stream has no closing ``-->`` yet and is not matched.
    """
    matches: list[MarkerMatch] = []
    for match in MARKER_PATTERN.finditer(content):
        try:
            marker = ToolCallMarker.model_validate(json.loads(match.group(1)))
        except (json.JSONDecodeError, ValidationError, TypeError, RecursionError):
            # RecursionError: payload nested deeper than the decoder can follow
            logger.debug("tool_call_marker_malformed", payload=match.group(1)[:200])
            marker = None
        matches.append(MarkerMatch(match.start(), match.end(), match.group(0), marker))
    return matches


def strip_markers(content: str) -> str:
    """Remove every complete marker from *content*."""
    return MARKER_PATTERN.sub("", content).strip()


def render_tool_call(view: ToolCallView) -> str:
    """Plain-text rendering of one tool call."""
    label = f"[tool: {view.server_name}/{view.tool_name}]"
    if view.status is None:
        return f"{label} not started"
    if view.status == ToolCallStatus.SUCCESS and view.result:
        return f"{label} success\n{view.result}"
    if view.status == ToolCallStatus.FAILED and view.error:
        return f"{label} failed: {view.error}"
    return f"{label} {view.status}"


class ToolCallCorrelator:
    """Maps ``call_id`` to its latest lifecycle record."""

    def __init__(self) -> None:
        self._calls: dict[int, ToolCallRecord] = {}

    # ── lifecycle ───────────────────────────────────────────────

    def record(self, call: ToolCallRecord) -> ToolCallRecord:
        """Upsert *call*; only fields explicitly set on it overwrite the stored record.

        Status only moves forward (pending, executing, then success or
        failed). A stale status is dropped together with its lifecycle
        fields while any metadata in the same update is still merged.
        """
        existing = self._calls.get(call.call_id)
        if existing is None:
            self._calls[call.call_id] = call
            return call

        update = call.model_dump(exclude_unset=True)
        if "status" in update and self._is_stale(existing.status, call.status):
            logger.debug(
                "tool_call_status_ignored",
                call_id=call.call_id,
                current=str(existing.status),
                incoming=str(call.status),
            )
            for name in _LIFECYCLE_FIELDS:
                update.pop(name, None)

        merged = existing.model_copy(update=update)
        self._calls[call.call_id] = merged
        return merged

    @staticmethod
    def _is_stale(current: ToolCallStatus, incoming: ToolCallStatus) -> bool:
        if incoming.rank < current.rank:
            return True
        # success and failed are both final
        return current.is_terminal and incoming != current

    def get(self, call_id: int) -> ToolCallRecord | None:
        return self._calls.get(call_id)

    def all(self) -> list[ToolCallRecord]:
        return list(self._calls.values())

    def calls_for_message(self, message_id: int) -> list[ToolCallRecord]:
        return [c for c in self._calls.values() if c.message_id == message_id]

    def active_call_ids(self) -> list[int]:
        return [cid for cid, c in self._calls.items() if not c.status.is_terminal]

    def find_match(
        self,
        message_id: int,
        server_name: str,
        tool_name: str,
        parameters: str,
    ) -> ToolCallRecord | None:
        """Find a record for a marker that carries no ``call_id``."""
        for call in self._calls.values():
            if (
                call.message_id == message_id
                and call.server_name == server_name
                and call.tool_name == tool_name
                and call.parameters == parameters
            ):
                return call
        return None

    def clear(self) -> None:
        self._calls.clear()

    # ── projection ──────────────────────────────────────────────

    def _lookup(self, marker: ToolCallMarker, message_id: int | None) -> ToolCallRecord | None:
        if marker.call_id is not None:
            call = self._calls.get(marker.call_id)
            if call is not None:
                return call
        if message_id is not None:
            return self.find_match(
                message_id, marker.server_name, marker.tool_name, marker.parameters
            )
        return None

    def view(self, marker: ToolCallMarker, message_id: int | None = None) -> ToolCallView:
        call = self._lookup(marker, message_id)
        if call is None:
            return ToolCallView(
                server_name=marker.server_name,
                tool_name=marker.tool_name,
                parameters=marker.parameters,
                call_id=marker.call_id,
            )
        return ToolCallView(
            server_name=call.server_name or marker.server_name,
            tool_name=call.tool_name or marker.tool_name,
            parameters=marker.parameters,
            call_id=call.call_id,
            status=call.status,
            result=call.result,
            error=call.error,
        )

    def segments(self, content: str, message_id: int | None = None) -> list[ContentSegment]:
        """Split *content* into text and tool-call segments.

        Malformed markers stay in the surrounding text.
        """
        parts: list[ContentSegment] = []
        buffer: list[str] = []
        last = 0
        for match in parse_markers(content):
            buffer.append(content[last:match.start])
            last = match.end
            if match.marker is None:
                buffer.append(match.raw)
                continue
            text = "".join(buffer)
            if text:
                parts.append(TextSegment(text))
            buffer = []
            parts.append(self.view(match.marker, message_id))
        buffer.append(content[last:])
        text = "".join(buffer)
        if text:
            parts.append(TextSegment(text))
        return parts

    def project(self, content: str, message_id: int | None = None) -> str:
        """Return *content* with every well-formed marker rendered as text."""
        return "".join(
            part.text if isinstance(part, TextSegment) else render_tool_call(part)
            for part in self.segments(content, message_id)
        )

    def completion_summary(
        self, content: str, message_id: int | None = None
    ) -> ToolCallSummary | None:
        """Outcome counts once every referenced call (two or more) has finished."""
        views = [
            part
            for part in self.segments(content, message_id)
            if isinstance(part, ToolCallView) and part.call_id is not None
        ]
        if len(views) < 2:
            return None
        if any(v.status is None or not v.status.is_terminal for v in views):
            return None
        succeeded = sum(1 for v in views if v.status == ToolCallStatus.SUCCESS)
        return ToolCallSummary(total=len(views), succeeded=succeeded, failed=len(views) - succeeded)
