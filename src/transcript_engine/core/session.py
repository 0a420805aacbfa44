"""Session registry mapping open conversations to their correlation stores."""

from __future__ import annotations

from transcript_engine.config import AppConfig
from transcript_engine.core.store import CorrelationStore
from transcript_engine.core.stream import Clock
from transcript_engine.log import get_logger

logger = get_logger(__name__)


class SessionRegistry:
    """Owns one CorrelationStore per open conversation."""

    def __init__(self, config: AppConfig | None = None, clock: Clock | None = None):
        self._config = config or AppConfig()
        self._clock = clock
        self._stores: dict[int, CorrelationStore] = {}

    def open(self, conversation_id: int) -> CorrelationStore:
        """Get or create the store for a conversation."""
        store = self._stores.get(conversation_id)
        if store is None:
            store = CorrelationStore.create(conversation_id, self._config, self._clock)
            self._stores[conversation_id] = store
            logger.info("conversation_opened", conversation_id=conversation_id)
        return store

    def reopen(self, conversation_id: int) -> CorrelationStore:
        """Discard any live state and start the conversation fresh."""
        self.close(conversation_id)
        return self.open(conversation_id)

    def close(self, conversation_id: int) -> bool:
        store = self._stores.pop(conversation_id, None)
        if store is None:
            return False
        store.dispose()
        logger.info("conversation_closed", conversation_id=conversation_id)
        return True

    def close_all(self) -> None:
        for conversation_id in list(self._stores):
            self.close(conversation_id)

    def get(self, conversation_id: int) -> CorrelationStore | None:
        return self._stores.get(conversation_id)

    def ids(self) -> list[int]:
        return list(self._stores.keys())
