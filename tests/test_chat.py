"""
StudyChat Tests

Covers the Gemini backend error mapping, the session → transcript →
apology chain, conversation persistence, and the Mongo store's upsert.
"""

import asyncio
from typing import Any, Dict, List, Sequence

import httpx
import pytest

from StudyShelf.config import StudyShelfConfig
from StudyShelf.config.models import ChatConfig, StorageConfig
from StudyShelf.ResourceAcquisition.errors import (
    AuthError,
    ErrorKind,
    HttpStatusError,
    InvalidArgumentError,
    NetworkError,
    ParseError,
    UnsupportedFormatError,
)
from StudyShelf.ResourceAcquisition.fallback import CancellationToken
from StudyShelf.schemas import ChatTurn
from StudyShelf.StudyChat.backend import GeminiBackend, error_from_payload, extract_text
from StudyShelf.StudyChat.history import (
    InMemoryConversationStore,
    MongoConversationStore,
    build_conversation_store,
)
from StudyShelf.StudyChat.service import ChatService
from StudyShelf.StudyChat.strategies import build_chat_strategies, transcript_prompt

GEMINI = "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"


class ScriptedBackend:
    """Backend returning or raising scripted results in order."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls: List[List[Dict[str, Any]]] = []

    async def generate(self, contents: Sequence[Dict[str, Any]]) -> str:
        self.calls.append(list(contents))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def _reply(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


class TestGeminiBackend:
    """Test the REST backend against a mocked endpoint."""

    def test_generate(self, make_client):
        """Test a successful call and the request shape."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.url.params.get("key")
            seen["body"] = request.read()
            return httpx.Response(200, json=_reply("Hello!"))

        client, _ = make_client({("POST", GEMINI): handler})
        backend = GeminiBackend(ChatConfig(api_key="k-1"), client)

        text = asyncio.run(backend.generate([{"role": "user", "parts": [{"text": "Hi"}]}]))

        assert text == "Hello!"
        assert seen["key"] == "k-1"
        assert b'"contents"' in seen["body"]

    @pytest.mark.parametrize(
        "status,api_status,expected",
        [
            (400, "INVALID_ARGUMENT", InvalidArgumentError),
            (403, "PERMISSION_DENIED", AuthError),
            (401, "UNAUTHENTICATED", AuthError),
            (429, "RESOURCE_EXHAUSTED", HttpStatusError),
        ],
    )
    def test_error_payloads(self, make_client, status, api_status, expected):
        """Test that API error statuses become typed errors."""
        body = {"error": {"code": status, "message": "nope", "status": api_status}}
        client, _ = make_client({("POST", GEMINI): lambda r: httpx.Response(status, json=body)})
        backend = GeminiBackend(ChatConfig(api_key="k"), client)

        with pytest.raises(expected):
            asyncio.run(backend.generate([]))

    def test_missing_key(self, make_client):
        """Test that no request is made without an API key."""
        client, router = make_client({})
        with pytest.raises(AuthError, match="GEMINI_API_KEY"):
            asyncio.run(GeminiBackend(ChatConfig(api_key=None), client).generate([]))
        assert router.calls == []

    def test_non_json_success(self, make_client):
        """Test that a 200 without JSON is a parse error."""
        client, _ = make_client({("POST", GEMINI): lambda r: httpx.Response(200, text="oops")})
        with pytest.raises(ParseError):
            asyncio.run(GeminiBackend(ChatConfig(api_key="k"), client).generate([]))

    def test_error_from_payload_without_body(self):
        """Test that bare HTTP errors map through the status code."""
        assert error_from_payload(503, None).retryable
        assert error_from_payload(429, {"error": {"status": "RESOURCE_EXHAUSTED"}}).status == 429

    def test_extract_text(self):
        """Test candidate text extraction and blocked replies."""
        assert extract_text(_reply("ok")) == "ok"
        with pytest.raises(ParseError):
            extract_text({"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}})
        with pytest.raises(ParseError):
            extract_text({"candidates": [{"content": {"parts": [{"text": "  "}]}}]})


class TestChatStrategies:
    """Test strategy construction and prompt flattening."""

    def test_transcript_prompt(self):
        """Test that the tail of the history is flattened into one user turn."""
        history = [
            ChatTurn.from_text("user", "one"),
            ChatTurn.from_text("model", "two"),
            ChatTurn.from_text("user", "three"),
        ]
        prompt = transcript_prompt(history, ChatTurn.from_text("user", "four"), max_turns=2)

        text = prompt.plain_text
        assert prompt.role == "user"
        assert "User: one" not in text
        assert "Assistant: two" in text
        assert text.endswith("User: four")

    def test_default_order(self):
        """Test the default chain order."""
        names = [s.name for s in build_chat_strategies(ScriptedBackend(), ChatConfig(api_key=None))]
        assert names == ["session", "transcript", "apology"]


class TestChatService:
    """Test ChatService.reply."""

    def test_session_reply_is_persisted(self, config):
        """Test a first reply: new user id, history stored."""
        backend = ScriptedBackend("Photosynthesis turns light into sugar.")
        store = InMemoryConversationStore()
        service = ChatService(config, backend, store)

        reply = asyncio.run(service.reply("What is photosynthesis?"))

        assert reply.strategy == "session"
        assert reply.user_id.startswith("user_")
        assert reply.to_dict() == {"response": "Photosynthesis turns light into sugar.", "userId": reply.user_id}
        assert [t.role for t in store.get(reply.user_id)] == ["user", "model"]

    def test_history_is_sent(self, config):
        """Test that the session strategy sends prior turns."""
        backend = ScriptedBackend("first", "second")
        service = ChatService(config, backend, InMemoryConversationStore())

        first = asyncio.run(service.reply("Hi", "user_abc"))
        asyncio.run(service.reply("Again", first.user_id))

        assert [c["role"] for c in backend.calls[1]] == ["user", "model", "user"]

    def test_transcript_fallback(self, config):
        """Test that a rejected session falls back to the flattened transcript."""
        backend = ScriptedBackend(InvalidArgumentError("bad history"), "recovered")
        service = ChatService(config, backend, InMemoryConversationStore())

        reply = asyncio.run(service.reply("Explain recursion", "user_1"))

        assert reply.strategy == "transcript"
        assert reply.response == "recovered"
        assert len(backend.calls[1]) == 1

    def test_apology_is_not_persisted(self, config):
        """Test that the static reply is returned but not stored."""
        backend = ScriptedBackend(NetworkError("down"), NetworkError("down"))
        store = InMemoryConversationStore()
        service = ChatService(config, backend, store)

        reply = asyncio.run(service.reply("Hello", "user_1"))

        assert reply.degraded
        assert reply.response == config.chat.apology_message
        assert store.get("user_1") == []
        assert [a.outcome for a in reply.attempts] == ["failed", "failed", "success"]

    def test_exhausted_without_apology(self):
        """Test that the last error is raised when no static reply is configured."""
        cfg = StudyShelfConfig.model_validate(
            {"fallback": {"chat": {"strategy_order": ["session", "transcript"]}}, "chat": {"api_key": None}}
        )
        backend = ScriptedBackend(NetworkError("down"), AuthError("denied", status=403))
        service = ChatService(cfg, backend, InMemoryConversationStore())

        with pytest.raises(AuthError):
            asyncio.run(service.reply("Hello", "user_1"))

    def test_empty_message(self, config):
        """Test that a message is required."""
        service = ChatService(config, ScriptedBackend(), InMemoryConversationStore())
        with pytest.raises(InvalidArgumentError):
            asyncio.run(service.reply("   "))

    def test_image_types(self, config):
        """Test image validation and inline encoding."""
        service = ChatService(config, ScriptedBackend(), InMemoryConversationStore())

        turn = service.build_turn("What is this?", ("image/png", b"\x89PNG"))
        assert turn.parts[1].inline_data.mime_type == "image/png"

        with pytest.raises(UnsupportedFormatError) as excinfo:
            service.build_turn("What is this?", ("application/pdf", b"%PDF"))
        assert excinfo.value.kind is ErrorKind.UNSUPPORTED_FORMAT

    def test_cancelled(self, config):
        """Test that a cancelled reply raises CancelledError."""
        service = ChatService(config, ScriptedBackend("never"), InMemoryConversationStore())
        token = CancellationToken()
        token.cancel("client left")

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(service.reply("Hi", "user_1", cancel_token=token))


class FakeCollection:
    """Minimal stand-in for a pymongo collection."""

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.updates: List[Any] = []

    def find_one(self, query):
        return self.documents.get(query["userId"])

    def update_one(self, query, update, upsert=False):
        self.updates.append((query, update, upsert))
        document = self.documents.setdefault(query["userId"], {"userId": query["userId"]})
        document.update(update["$set"])

    def delete_one(self, query):
        self.documents.pop(query["userId"], None)


class TestConversationStores:
    """Test conversation persistence."""

    def test_in_memory_append(self):
        """Test appending and clearing."""
        store = InMemoryConversationStore()
        store.append("u", [ChatTurn.from_text("user", "hi")])
        history = store.append("u", [ChatTurn.from_text("model", "hello")])
        assert len(history.history) == 2
        store.clear("u")
        assert store.get("u") == []

    def test_mongo_upsert(self):
        """Test that the Mongo store replaces the history with $set and upsert."""
        collection = FakeCollection()
        store = MongoConversationStore(client={"studyshelf": {"chathistories": collection}})

        store.append("user_1", [ChatTurn.from_text("user", "hi")])
        store.append("user_1", [ChatTurn.from_text("model", "hello")])

        query, update, upsert = collection.updates[-1]
        assert query == {"userId": "user_1"}
        assert upsert is True
        assert [t["role"] for t in update["$set"]["history"]] == ["user", "model"]
        assert [t.plain_text for t in store.get("user_1")] == ["hi", "hello"]

    def test_build_store(self):
        """Test backend selection."""
        assert isinstance(build_conversation_store(StorageConfig()), InMemoryConversationStore)
