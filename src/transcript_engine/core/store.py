"""Per-conversation correlation context: resolver + stream + tool-call state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from transcript_engine.config import AppConfig
from transcript_engine.core.branch import BranchResolution, BranchResolver, VersionInfo
from transcript_engine.core.events import (
    ConversationCancel,
    ConversationEvent,
    GroupMerge,
    MessageAdd,
    MessageUpdate,
    StreamComplete,
    ToolCallUpdate,
)
from transcript_engine.core.models import Message
from transcript_engine.core.stream import Clock, DisplayContent, StreamCorrelator
from transcript_engine.core.tool_calls import ToolCallCorrelator
from transcript_engine.log import get_logger

logger = get_logger(__name__)


class StoreDisposedError(RuntimeError):
    """The conversation owning this store has been closed."""


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    message: Message
    resolved_content: str
    streaming: DisplayContent
    version: Optional[VersionInfo] = None  # set when the generation has several versions


class CorrelationStore:
    """All mutable correlation state for one open conversation.

    Created when a conversation is opened and disposed when it closes, so
    stream buffers and tool-call states never leak between conversations.
    """

    def __init__(
        self,
        conversation_id: int,
        config: AppConfig | None = None,
        clock: Clock | None = None,
    ):
        config = config or AppConfig()
        self.conversation_id = conversation_id
        self._resolver = BranchResolver(strict=config.branch.strict_supersession)
        self._streams = StreamCorrelator(config.streaming, clock=clock)
        self._tool_calls = ToolCallCorrelator()
        self._merges: dict[str, GroupMerge] = {}  # keyed by new_group_id
        self._disposed = False

    @classmethod
    def create(
        cls,
        conversation_id: int,
        config: AppConfig | None = None,
        clock: Clock | None = None,
    ) -> CorrelationStore:
        store = cls(conversation_id, config, clock)
        logger.info("correlation_store_created", conversation_id=conversation_id)
        return store

    def dispose(self) -> None:
        if self._disposed:
            return
        self._streams.clear()
        self._tool_calls.clear()
        self._merges.clear()
        self._disposed = True
        logger.info("correlation_store_disposed", conversation_id=self.conversation_id)

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def streams(self) -> StreamCorrelator:
        self._check_open()
        return self._streams

    @property
    def tool_calls(self) -> ToolCallCorrelator:
        self._check_open()
        return self._tool_calls

    def _check_open(self) -> None:
        if self._disposed:
            raise StoreDisposedError(
                f"Correlation store for conversation {self.conversation_id} is disposed"
            )

    # ── events ──────────────────────────────────────────────────

    def apply(self, event: ConversationEvent) -> bool:
        """Apply one conversation event. Returns False when it was dropped."""
        self._check_open()
        match event:
            case MessageAdd(message_id=message_id, message_type=message_type, started_at=started_at):
                self._streams.begin(message_id, message_type, started_at)
                return True
            case MessageUpdate(message_id=message_id, event=stream_event):
                return self._streams.apply_event(message_id, stream_event)
            case ToolCallUpdate(record=record):
                self._tool_calls.record(record)
                return True
            case GroupMerge(new_group_id=new_group_id):
                self._merges[new_group_id] = event
                return True
            case StreamComplete() | ConversationCancel():
                completed = self._streams.complete_all()
                logger.debug(
                    "streams_completed",
                    conversation_id=self.conversation_id,
                    event_type=type(event).__name__,
                    message_ids=completed,
                )
                return True
            case _:
                raise TypeError(f"Unsupported conversation event: {event!r}")

    # ── projection ──────────────────────────────────────────────

    def resolve(self, messages: Iterable[Message]) -> list[Message]:
        self._check_open()
        return self._resolver.resolve(messages)

    def sync(self, messages: Iterable[Message]) -> list[Message]:
        """Track the active branch of the stored *messages* and return it.

        Stream events are only accepted for tracked messages, so call this
        whenever the store hands over a fresh message list.
        """
        return self._sync(list(messages)).messages

    def _sync(self, messages: list[Message]) -> BranchResolution:
        self._check_open()
        resolution = self._resolver.resolve_with_forest(messages)
        for merge in self._merges.values():
            resolution.forest.merge(merge.original_group_id, merge.new_group_id, merge.first_message_id)
        self._streams.sync(resolution.messages, {m.id for m in messages})
        return resolution

    def transcript(self, messages: Iterable[Message], now: datetime | None = None) -> list[TranscriptEntry]:
        """Display-ready transcript for the stored *messages*.

        Messages announced by the feed but not yet stored follow the
        resolved branch in start order. Entries of a regenerated generation
        carry their version position.
        """
        messages = list(messages)
        resolution = self._sync(messages)
        stored_ids = {m.id for m in messages}

        pending = sorted(
            (s for s in self._streams.provisional() if s.message_id not in stored_ids),
            key=lambda s: (s.start_time is None, s.start_time, s.message_id),
        )
        announced = {m.first_message_id: m for m in self._merges.values() if m.first_message_id is not None}

        entries: list[TranscriptEntry] = []
        for message in resolution.messages:
            live = self._streams.overlay(message)
            entries.append(self._entry(live, now, resolution))
        for state in pending:
            merge = announced.get(state.message_id)
            placeholder = Message(
                id=state.message_id,
                conversation_id=self.conversation_id,
                message_type=state.message_type,
                content=state.content,
                created_time=state.start_time,
                start_time=state.start_time,
                finish_time=state.finish_time,
                generation_group_id=merge.new_group_id if merge else None,
                parent_group_id=merge.original_group_id if merge else None,
            )
            entries.append(self._entry(placeholder, now, resolution))
        return entries

    def _entry(
        self, message: Message, now: datetime | None, resolution: BranchResolution
    ) -> TranscriptEntry:
        display = self._streams.get_display_content(message.id, now) or DisplayContent(
            content=message.content, is_streaming=False
        )
        group = message.generation_group_id
        return TranscriptEntry(
            message=message,
            resolved_content=self._tool_calls.project(message.content, message.id),
            streaming=display,
            version=resolution.forest.version_of(group) if group is not None else None,
        )
