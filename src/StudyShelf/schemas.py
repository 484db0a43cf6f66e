"""
Pydantic v2 Document Schemas for StudyShelf

Typed shapes of the documents persisted by the services:
- Book catalogue entries and the per-user Cart
- Users with their embedded cart mirror and purchases
- Calendar Events with attendees
- Flashcard decks (spaced-repetition fields are stored, never scheduled)
- Chat histories in the Gemini ``{role, parts}`` shape

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``), matching the stored documents.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Document(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# Catalogue and cart
# ============================================================================


class Book(_Document):
    """Catalogue entry; ``url`` points at the stored PDF/EPUB."""

    id: Optional[str] = None
    title: str
    author: str
    description: str = ""
    genre: str = "Others"
    price: float = Field(ge=0)
    coverimage: str = ""
    url: str


class CartItem(_Document):
    book_id: str
    title: str
    author: str
    price: float = Field(ge=0)
    coverimage: str = ""
    quantity: int = Field(default=1, ge=1)
    added_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_book(cls, book: Book, quantity: int = 1) -> "CartItem":
        if book.id is None:
            raise ValueError("Book must have an id to be added to a cart")
        return cls(
            book_id=book.id,
            title=book.title,
            author=book.author,
            price=book.price,
            coverimage=book.coverimage,
            quantity=quantity,
        )


class Cart(_Document):
    """One cart per user; ``updated_at`` is refreshed on every save."""

    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_unique_books(self) -> "Cart":
        ids = [item.book_id for item in self.items]
        if len(set(ids)) != len(ids):
            raise ValueError("Cart items must reference distinct books")
        return self

    def touch(self) -> "Cart":
        self.updated_at = utcnow()
        return self

    def find(self, book_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.book_id == book_id:
                return item
        return None

    @property
    def total(self) -> float:
        return round(sum(item.price * item.quantity for item in self.items), 2)


class PurchasedBook(_Document):
    book_id: str
    title: str
    author: str
    coverimage: str = ""
    price: float = Field(ge=0)
    url: str
    purchase_date: datetime = Field(default_factory=utcnow)
    payment_id: Optional[str] = None


class User(_Document):
    """Identity plus the embedded cart mirror and purchases."""

    id: Optional[str] = None
    username: str
    email: str
    password_hash: Optional[str] = None
    google_id: Optional[str] = None
    cart_items: List[CartItem] = Field(default_factory=list)
    cart_updated_at: datetime = Field(default_factory=utcnow)
    purchased_books: List[PurchasedBook] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_credentials(self) -> "User":
        # Password is only optional for Google sign-in accounts.
        if not self.password_hash and not self.google_id:
            raise ValueError("User needs a password hash or a Google id")
        return self

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v.strip().lower()


# ============================================================================
# Calendar
# ============================================================================


class Attendee(_Document):
    email: str
    name: Optional[str] = None
    status: Literal["pending", "accepted", "declined"] = "pending"


class Event(_Document):
    """Calendar event. ``recurrence`` is an iCal RRULE kept as opaque text."""

    id: Optional[str] = None
    user_id: str
    title: str
    description: Optional[str] = None
    start: datetime
    end: datetime
    location: Optional[str] = None
    attendees: List[Attendee] = Field(default_factory=list)
    calendar_id: Optional[str] = None
    color: str = "#A67C52"
    is_all_day: bool = False
    recurrence: Optional[str] = None
    reminders: List[int] = Field(default_factory=lambda: [30])

    @model_validator(mode="after")
    def validate_window(self) -> "Event":
        if self.end < self.start:
            raise ValueError("Event end must not precede its start")
        return self


# ============================================================================
# Flashcards
# ============================================================================


class Flashcard(_Document):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    tags: List[str] = Field(default_factory=list)
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    last_reviewed: Optional[datetime] = None
    review_count: int = Field(default=0, ge=0)
    knowledge_level: int = Field(default=0, ge=0, le=5)


class FlashcardDeck(_Document):
    id: Optional[str] = None
    user_id: str
    title: str
    description: Optional[str] = None
    source_document: Optional[str] = None
    source_document_name: Optional[str] = None
    flashcards: List[Flashcard] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Chat
# ============================================================================


class InlineData(_Document):
    mime_type: str
    data: str  # base64


class MessagePart(_Document):
    """Exactly one of ``text`` or ``inline_data``."""

    text: Optional[str] = None
    inline_data: Optional[InlineData] = None

    @model_validator(mode="after")
    def validate_one_payload(self) -> "MessagePart":
        if (self.text is None) == (self.inline_data is None):
            raise ValueError("MessagePart needs exactly one of text or inlineData")
        return self


class ChatTurn(_Document):
    role: Literal["user", "model"]
    parts: List[MessagePart] = Field(min_length=1)

    @classmethod
    def from_text(cls, role: str, text: str) -> "ChatTurn":
        return cls(role=role, parts=[MessagePart(text=text)])

    @property
    def plain_text(self) -> str:
        return "\n".join(part.text for part in self.parts if part.text)


class ChatHistory(_Document):
    """Conversation keyed by a client-generated user id."""

    user_id: str
    history: List[ChatTurn] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)


__all__ = [
    "Attendee",
    "Book",
    "Cart",
    "CartItem",
    "ChatHistory",
    "ChatTurn",
    "Event",
    "Flashcard",
    "FlashcardDeck",
    "InlineData",
    "MessagePart",
    "PurchasedBook",
    "User",
    "utcnow",
]
