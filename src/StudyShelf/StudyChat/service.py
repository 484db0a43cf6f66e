"""ChatService: one reply per user message through the chat fallback chain."""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from StudyShelf.config.models import StudyShelfConfig
from StudyShelf.ResourceAcquisition.errors import (
    InvalidArgumentError,
    UnexpectedStrategyError,
    UnsupportedFormatError,
)
from StudyShelf.ResourceAcquisition.fallback import (
    AttemptRecord,
    CancellationToken,
    Cancelled,
    Exhausted,
    FallbackSequencer,
)
from StudyShelf.ResourceAcquisition.fallback.loader import build_sequence_plan
from StudyShelf.schemas import ChatTurn, InlineData, MessagePart

from .backend import GenerativeBackend
from .history import ConversationStore
from .strategies import build_chat_strategies

LOGGER = logging.getLogger(__name__)

APOLOGY_STRATEGY = "apology"


def new_user_id() -> str:
    return f"user_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class ChatReply:
    """Reply text plus the user id the client must keep using."""

    response: str
    user_id: str
    strategy: str
    attempts: Tuple[AttemptRecord, ...] = field(default=(), repr=False)

    @property
    def degraded(self) -> bool:
        return self.strategy == APOLOGY_STRATEGY

    def to_dict(self) -> dict:
        return {"response": self.response, "userId": self.user_id}


class ChatService:
    """Runs session → transcript → apology and persists the exchange.

    Args:
        config: Effective configuration
        backend: Generative backend used by the session/transcript strategies
        store: Conversation store keyed by user id
        telemetry: Optional telemetry sink for the sequencer
    """

    def __init__(
        self,
        config: StudyShelfConfig,
        backend: GenerativeBackend,
        store: ConversationStore,
        *,
        telemetry: Optional[Any] = None,
        profile: Optional[str] = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.store = store
        self.telemetry = telemetry
        self.plan = build_sequence_plan(config.fallback.chat, profile=profile)
        self.strategies = build_chat_strategies(backend, config.chat, self.plan)

    def build_turn(self, message: str, image: Optional[Tuple[str, bytes]] = None) -> ChatTurn:
        """Validate the inputs and build the new user turn.

        Raises:
            InvalidArgumentError: Empty message
            UnsupportedFormatError: Image type not supported or too large
        """
        if not message or not message.strip():
            raise InvalidArgumentError("Message is required")

        parts: List[MessagePart] = [MessagePart(text=message)]
        if image is not None:
            mime_type, data = image
            if mime_type not in self.config.chat.supported_image_types:
                raise UnsupportedFormatError(
                    "Only image files are supported currently (jpg/png/webp)",
                    expected=",".join(self.config.chat.supported_image_types),
                    actual=mime_type,
                )
            if len(data) > self.config.chat.max_upload_bytes:
                raise UnsupportedFormatError(
                    f"Image exceeds {self.config.chat.max_upload_bytes} bytes",
                    expected=f"<= {self.config.chat.max_upload_bytes} bytes",
                    actual=f"{len(data)} bytes",
                )
            parts.append(
                MessagePart(
                    inline_data=InlineData(
                        mime_type=mime_type, data=base64.b64encode(data).decode("ascii")
                    )
                )
            )
        return ChatTurn(role="user", parts=parts)

    async def reply(
        self,
        message: str,
        user_id: Optional[str] = None,
        image: Optional[Tuple[str, bytes]] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ChatReply:
        """Produce one reply.

        A missing ``user_id`` starts a fresh conversation; the generated id
        is returned on the reply so the client can persist it.

        Raises:
            AcquisitionError: Invalid input, or every strategy failed (only
                possible when the plan has no apology strategy)
            asyncio.CancelledError: ``cancel_token`` fired
        """
        turn = self.build_turn(message, image)
        if not user_id:
            user_id = new_user_id()
            LOGGER.info(f"Starting new conversation {user_id}")

        history = await asyncio.to_thread(self.store.get, user_id)
        sequencer: FallbackSequencer[str] = FallbackSequencer(
            self.strategies,
            plan=self.plan,
            telemetry=self.telemetry,
            logger=LOGGER,
            label="chat",
        )
        outcome = await sequencer.run(
            {"history": history, "turn": turn, "user_id": user_id},
            cancel_token=cancel_token,
        )

        if isinstance(outcome, Cancelled):
            raise asyncio.CancelledError(outcome.reason or "chat reply cancelled")
        if isinstance(outcome, Exhausted):
            if outcome.last_error is not None:
                raise outcome.last_error
            raise UnexpectedStrategyError("No chat strategy produced a reply")

        if outcome.strategy != APOLOGY_STRATEGY:
            await asyncio.to_thread(
                self.store.append,
                user_id,
                [turn, ChatTurn.from_text("model", outcome.resource)],
            )
        return ChatReply(
            response=outcome.resource,
            user_id=user_id,
            strategy=outcome.strategy,
            attempts=outcome.attempts,
        )


__all__ = ["ChatReply", "ChatService", "new_user_id"]
