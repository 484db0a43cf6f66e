"""Conversation storage keyed by a client-generated user id.

Writes are full-history replace-on-write (``$set`` upsert). Two concurrent
writers for the same user race and the last one wins; there is no version
field.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pymongo import MongoClient

from StudyShelf.schemas import ChatHistory, ChatTurn, utcnow

LOGGER = logging.getLogger(__name__)


class ConversationStore(Protocol):
    def get(self, user_id: str) -> List[ChatTurn]: ...

    def append(self, user_id: str, turns: Sequence[ChatTurn]) -> ChatHistory: ...

    def clear(self, user_id: str) -> None: ...


class InMemoryConversationStore:
    """Process-local store, the default for tests and the CLI."""

    def __init__(self) -> None:
        self._histories: Dict[str, ChatHistory] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> List[ChatTurn]:
        with self._lock:
            history = self._histories.get(user_id)
            return [turn.model_copy(deep=True) for turn in history.history] if history else []

    def append(self, user_id: str, turns: Sequence[ChatTurn]) -> ChatHistory:
        with self._lock:
            history = self._histories.get(user_id) or ChatHistory(user_id=user_id)
            updated = ChatHistory(
                user_id=user_id,
                history=[*history.history, *turns],
                updated_at=utcnow(),
            )
            self._histories[user_id] = updated
            return updated.model_copy(deep=True)

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._histories.pop(user_id, None)


class MongoConversationStore:
    """pymongo-backed store using the ``chathistories`` collection."""

    def __init__(
        self,
        mongo_url: str = "mongodb://localhost:27017",
        database: str = "studyshelf",
        *,
        collection: str = "chathistories",
        client: Optional[Any] = None,
    ) -> None:
        if client is None:
            client = MongoClient(mongo_url)
        self._client = client
        self.collection = client[database][collection]

    def get(self, user_id: str) -> List[ChatTurn]:
        document = self.collection.find_one({"userId": user_id})
        if not document:
            return []
        return [ChatTurn.model_validate(turn) for turn in document.get("history", [])]

    def append(self, user_id: str, turns: Sequence[ChatTurn]) -> ChatHistory:
        history = ChatHistory(
            user_id=user_id,
            history=[*self.get(user_id), *turns],
            updated_at=utcnow(),
        )
        payload = history.model_dump(by_alias=True, exclude={"user_id"}, exclude_none=True)
        self.collection.update_one({"userId": user_id}, {"$set": payload}, upsert=True)
        LOGGER.debug(f"Stored {len(history.history)} turn(s) for {user_id}")
        return history

    def clear(self, user_id: str) -> None:
        self.collection.delete_one({"userId": user_id})


def build_conversation_store(storage: Any) -> ConversationStore:
    """Return the store selected by a StorageConfig."""
    if storage.backend == "mongo":
        return MongoConversationStore(storage.mongo_url, storage.database)
    return InMemoryConversationStore()


__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "MongoConversationStore",
    "build_conversation_store",
]
