"""Engine orchestrator - wires registry, event channel and exporter."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Iterable

from transcript_engine.config import AppConfig
from transcript_engine.core.branch import BranchResolver
from transcript_engine.core.channel import EventChannel
from transcript_engine.core.events import ConversationEvent, decode_event
from transcript_engine.core.models import Message, ToolCallRecord
from transcript_engine.core.session import SessionRegistry
from transcript_engine.core.store import CorrelationStore, TranscriptEntry
from transcript_engine.core.stream import Clock
from transcript_engine.core.types import ExportFormat
from transcript_engine.export.models import ConversationInfo, ExportOptions
from transcript_engine.export.projector import ExportProjector
from transcript_engine.log import get_logger

logger = get_logger(__name__)


class TranscriptEngine:
    """Top-level engine: one registry of open conversations fed by one channel."""

    def __init__(self, config: AppConfig | None = None, clock: Clock | None = None):
        self.config = config or AppConfig()
        self.registry = SessionRegistry(self.config, clock)
        self.resolver = BranchResolver(strict=self.config.branch.strict_supersession)
        self.channel = EventChannel(self.config.channel.max_pending_events)
        self.exporter = ExportProjector(ExportOptions.from_config(self.config.export))
        self._pump: asyncio.Task | None = None

    async def start(self) -> None:
        """Start pumping channel events into open conversations."""
        if self._pump is not None:
            return
        self._pump = asyncio.create_task(self.channel.run(self.registry))
        logger.info("transcript_engine_started")

    async def stop(self) -> None:
        """Drain pending events, then dispose every conversation."""
        if self._pump is not None:
            await self.channel.close()
            await self._pump
            self._pump = None
        self.registry.close_all()
        logger.info("transcript_engine_stopped")

    # ── conversations ───────────────────────────────────────────

    def open_conversation(self, conversation_id: int) -> CorrelationStore:
        return self.registry.open(conversation_id)

    def close_conversation(self, conversation_id: int) -> bool:
        return self.registry.close(conversation_id)

    # ── events ──────────────────────────────────────────────────

    async def publish(self, event: ConversationEvent) -> None:
        await self.channel.publish(event)

    async def publish_payload(self, payload: dict[str, Any]) -> None:
        """Decode a ``{type, data}`` wire payload and publish it."""
        await self.channel.publish(decode_event(payload))

    async def drain(self) -> None:
        """Wait until every published event has been applied."""
        await self.channel.join()

    # ── projections ─────────────────────────────────────────────

    def transcript(
        self,
        conversation_id: int,
        messages: Iterable[Message],
        now: datetime | None = None,
    ) -> list[TranscriptEntry]:
        return self.registry.open(conversation_id).transcript(messages, now)

    def export(
        self,
        conversation: ConversationInfo,
        messages: Iterable[Message],
        tool_calls: Iterable[ToolCallRecord] = (),
        fmt: ExportFormat | None = None,
        options: ExportOptions | None = None,
    ) -> str:
        """Export the active branch of *messages*.

        Live tool-call records of an open conversation override the stored ones.
        """
        store = self.registry.get(conversation.id)
        active = store.resolve(messages) if store is not None else self.resolver.resolve(messages)
        records = {c.call_id: c for c in tool_calls}
        if store is not None:
            records.update({c.call_id: c for c in store.tool_calls.all()})
        return self.exporter.export(
            conversation,
            active,
            records.values(),
            fmt or self.config.export.default_format,
            options,
        )
