"""Per-message streaming state driven by the conversation event feed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from transcript_engine.config import StreamingConfig
from transcript_engine.core.models import Message, StreamEvent
from transcript_engine.core.types import MessageType
from transcript_engine.log import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StreamState:
    message_id: int
    message_type: Optional[MessageType]
    content: str = ""
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    is_done: bool = False
    duration_ms: Optional[int] = None
    ttft_ms: Optional[int] = None
    tps: Optional[float] = None
    output_token_count: Optional[int] = None
    provisional: bool = False  # announced by the feed, not yet in the store

    @property
    def is_terminal(self) -> bool:
        return self.is_done or self.finish_time is not None


@dataclass(frozen=True, slots=True)
class DisplayContent:
    content: str
    is_streaming: bool
    thinking_elapsed_ms: Optional[int] = None


def format_elapsed(ms: int) -> str:
    """Format a duration for "thought for ..." labels: ``42s``, ``1m 5s``."""
    seconds = max(0, ms) // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes, remainder = divmod(seconds, 60)
    return f"{minutes}m {remainder}s"


class StreamCorrelator:
    """Tracks live content and timing for in-flight messages.

    Only ``apply_event`` and the tracking methods mutate state. Events use
    full-replacement semantics: the newest ``content`` wins. Once a message is
    done, later events for it are ignored.
    """

    def __init__(self, config: StreamingConfig | None = None, clock: Clock | None = None):
        self._config = config or StreamingConfig()
        self._clock = clock or _utc_now
        self._states: dict[int, StreamState] = {}

    # ── tracking ────────────────────────────────────────────────

    def track(self, message: Message) -> StreamState:
        """Register *message* or refresh a tracked one from the store."""
        state = self._states.get(message.id)
        if state is None:
            state = StreamState(
                message_id=message.id,
                message_type=message.message_type,
                content=message.content,
                start_time=message.start_time,
                finish_time=message.finish_time,
                # Never started, or already finished: nothing will stream.
                is_done=not message.is_in_progress,
            )
            self._states[message.id] = state
            return state

        state.provisional = False
        state.message_type = message.message_type
        if state.start_time is None:
            state.start_time = message.start_time
        if message.finish_time is not None and not state.is_terminal:
            # The store caught up with a completed message.
            state.finish_time = message.finish_time
            state.content = message.content
        return state

    def begin(
        self,
        message_id: int,
        message_type: MessageType,
        started_at: datetime | None = None,
    ) -> StreamState:
        """Register a message the feed announced before the store returned it."""
        state = self._states.get(message_id)
        if state is not None:
            return state
        state = StreamState(
            message_id=message_id,
            message_type=message_type,
            start_time=started_at or self._clock(),
            provisional=True,
        )
        self._states[message_id] = state
        logger.debug("stream_begun", message_id=message_id, message_type=str(message_type))
        return state

    def sync(self, messages: Iterable[Message], stored_ids: Iterable[int] = ()) -> None:
        """Track the active branch and forget messages that left it.

        Provisional states survive until the store knows their message
        (*stored_ids*), after which they follow the active branch like any other.
        """
        active: set[int] = set()
        for message in messages:
            self.track(message)
            active.add(message.id)
        stored = set(stored_ids)
        for message_id in [
            mid
            for mid, s in self._states.items()
            if mid not in active and (not s.provisional or mid in stored)
        ]:
            del self._states[message_id]

    def forget(self, message_id: int) -> None:
        self._states.pop(message_id, None)

    def clear(self) -> None:
        self._states.clear()

    # ── mutation ────────────────────────────────────────────────

    def apply_event(self, message_id: int, event: StreamEvent) -> bool:
        """Apply one stream event. Returns False when the event was dropped."""
        state = self._states.get(message_id)
        if state is None:
            logger.debug("stream_event_dropped", message_id=message_id, reason="unknown_message")
            return False
        if state.is_terminal:
            logger.debug("stream_event_dropped", message_id=message_id, reason="terminal")
            return False

        state.content = event.content
        if event.message_type is not None:
            state.message_type = event.message_type
        if event.duration_ms is not None:
            state.duration_ms = event.duration_ms
        if event.ttft_ms is not None:
            state.ttft_ms = event.ttft_ms
        if event.tps is not None:
            state.tps = event.tps
        if event.output_token_count is not None:
            state.output_token_count = event.output_token_count
        if event.is_done:
            state.is_done = True
            state.finish_time = event.end_time or self._clock()
        return True

    def complete_all(self, now: datetime | None = None) -> list[int]:
        """Terminate every in-flight message (stream complete or cancelled)."""
        finished_at = now or self._clock()
        completed: list[int] = []
        for state in self._states.values():
            if not state.is_terminal:
                state.is_done = True
                state.finish_time = finished_at
                completed.append(state.message_id)
        return completed

    # ── reads ───────────────────────────────────────────────────

    def get(self, message_id: int) -> StreamState | None:
        return self._states.get(message_id)

    def is_streaming(self, message_id: int) -> bool:
        state = self._states.get(message_id)
        return state is not None and not state.is_terminal

    def in_flight(self) -> list[int]:
        return [mid for mid, s in self._states.items() if not s.is_terminal]

    def provisional(self) -> list[StreamState]:
        return [s for s in self._states.values() if s.provisional]

    def thinking_elapsed_ms(self, message_id: int, now: datetime | None = None) -> int | None:
        state = self._states.get(message_id)
        if state is None:
            return None
        # Backend duration arrives with stream completion, the persisted
        # finish time later, and neither exists while still thinking.
        if state.duration_ms is not None and state.duration_ms > 0:
            return state.duration_ms
        if state.start_time is not None and state.finish_time is not None:
            return int((state.finish_time - state.start_time).total_seconds() * 1000)
        if state.start_time is not None and not state.is_terminal:
            elapsed = (now or self._clock()) - state.start_time
            return max(0, int(elapsed.total_seconds() * 1000))
        return None

    def get_display_content(self, message_id: int, now: datetime | None = None) -> DisplayContent | None:
        state = self._states.get(message_id)
        if state is None:
            return None
        return DisplayContent(
            content=state.content,
            is_streaming=not state.is_terminal,
            thinking_elapsed_ms=self.thinking_elapsed_ms(message_id, now),
        )

    def refresh_interval(self, message_id: int, now: datetime | None = None) -> float | None:
        """Seconds until a "still thinking" indicator should be redrawn."""
        if not self.is_streaming(message_id):
            return None
        elapsed_ms = self.thinking_elapsed_ms(message_id, now)
        if elapsed_ms is not None and elapsed_ms > self._config.slow_after_seconds * 1000:
            return self._config.refresh_slow_seconds
        return self._config.refresh_fast_seconds

    def overlay(self, message: Message) -> Message:
        """Return *message* with its live streaming state applied."""
        state = self._states.get(message.id)
        if state is None:
            return message
        update: dict = {"content": state.content}
        if state.finish_time is not None and message.finish_time is None:
            update["finish_time"] = state.finish_time
        if state.message_type is not None:
            update["message_type"] = state.message_type
        return message.model_copy(update=update)
