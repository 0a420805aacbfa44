"""Bounded asyncio channel feeding conversation events into their stores."""

from __future__ import annotations

import asyncio

from transcript_engine.core.events import ConversationEvent
from transcript_engine.core.session import SessionRegistry
from transcript_engine.log import conversation_context, get_logger

logger = get_logger(__name__)

_CLOSE = object()


class EventChannel:
    """FIFO queue of conversation events.

    A single queue keeps every message id's events in publish order, which
    is all the last-write-wins stream policy needs. Publishing waits when
    ``maxsize`` events are pending.
    """

    def __init__(self, maxsize: int = 1024):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    async def publish(self, event: ConversationEvent) -> None:
        if self._closed:
            raise RuntimeError("Event channel is closed")
        await self._queue.put(event)

    def publish_nowait(self, event: ConversationEvent) -> None:
        """Publish without waiting; raises ``asyncio.QueueFull`` when full."""
        if self._closed:
            raise RuntimeError("Event channel is closed")
        self._queue.put_nowait(event)

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop accepting events; ``run`` returns after draining what is queued."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSE)

    async def run(self, registry: SessionRegistry) -> int:
        """Apply queued events to their conversations until closed.

        Returns the number of events applied.
        """
        applied = 0
        while True:
            event = await self._queue.get()
            try:
                if event is _CLOSE:
                    break
                store = registry.get(event.conversation_id)
                if store is None:
                    logger.debug(
                        "event_dropped",
                        conversation_id=event.conversation_id,
                        event_type=type(event).__name__,
                        reason="conversation_not_open",
                    )
                    continue
                with conversation_context(event.conversation_id):
                    if store.apply(event):
                        applied += 1
            except Exception as e:
                logger.error("event_apply_error", event_type=type(event).__name__, error=str(e))
            finally:
                self._queue.task_done()
        logger.info("event_channel_stopped", applied=applied)
        return applied
