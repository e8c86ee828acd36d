"""
Conversation history stores.

The entity keeps per-thread history behind the ``ConversationStore``
protocol so a persistent backend can replace the in-memory default without
touching the loop.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ConversationStore(Protocol):
    """Per-conversation message history."""

    def get(self, conversation_id: str) -> list[dict[str, Any]]:
        """Return a copy of the history for *conversation_id* (empty if unknown)."""
        ...

    def save(self, conversation_id: str, history: list[dict[str, Any]]) -> None:
        """Replace the history for *conversation_id*."""
        ...

    def clear(self, conversation_id: str) -> None:
        ...

    def clear_all(self) -> None:
        ...

    def __len__(self) -> int:
        ...


class InMemoryConversationStore:
    """Process-local history store; contents are lost on restart."""

    def __init__(self) -> None:
        self._histories: dict[str, list[dict[str, Any]]] = {}

    def get(self, conversation_id: str) -> list[dict[str, Any]]:
        return list(self._histories.get(conversation_id, []))

    def save(self, conversation_id: str, history: list[dict[str, Any]]) -> None:
        self._histories[conversation_id] = list(history)

    def clear(self, conversation_id: str) -> None:
        self._histories.pop(conversation_id, None)

    def clear_all(self) -> None:
        count = len(self._histories)
        self._histories.clear()
        logger.debug("Cleared %d conversation histories", count)

    def __len__(self) -> int:
        return len(self._histories)
