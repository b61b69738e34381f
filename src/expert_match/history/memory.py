"""Chat history storage contract and an in-memory implementation."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

from expert_match.types import ConversationMessage


class HistoryRepository(Protocol):
    def get_recent(self, chat_id: str, limit: int) -> list[ConversationMessage]:
        """Return up to `limit` messages of the chat, newest first."""


class InMemoryHistoryRepository:
    def __init__(self) -> None:
        self._chats: dict[str, list[ConversationMessage]] = {}
        self._lock = threading.Lock()

    def append(self, chat_id: str, role: str, content: str) -> ConversationMessage:
        with self._lock:
            messages = self._chats.setdefault(chat_id, [])
            message = ConversationMessage(
                id=str(uuid.uuid4()),
                chat_id=chat_id,
                role=role,
                content=content,
                sequence_number=len(messages) + 1,
                created_at=datetime.now(timezone.utc),
            )
            messages.append(message)
        return message

    def get_recent(self, chat_id: str, limit: int) -> list[ConversationMessage]:
        with self._lock:
            messages = list(self._chats.get(chat_id, []))
        return list(reversed(messages[-limit:])) if limit > 0 else []
