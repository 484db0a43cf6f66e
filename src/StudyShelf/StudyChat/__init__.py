"""
StudyChat

AI study assistant: chat replies through a session → transcript → apology
fallback chain, conversation storage, and flashcard generation from PDFs.
"""

from .backend import GeminiBackend, GenerativeBackend
from .flashcards import FlashcardGenerator, parse_flashcards
from .history import InMemoryConversationStore, MongoConversationStore, build_conversation_store
from .service import ChatReply, ChatService

__all__ = [
    "ChatReply",
    "ChatService",
    "FlashcardGenerator",
    "GeminiBackend",
    "GenerativeBackend",
    "InMemoryConversationStore",
    "MongoConversationStore",
    "build_conversation_store",
    "parse_flashcards",
]
